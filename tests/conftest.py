"""
Pytest configuration / shared fixtures for annostore tests.
"""

import pytest

from annostore.docstore.config import StoreConfig
from annostore.docstore.schema import SchemaRegistry
from annostore.docstore.types import Document


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep ANNOSTORE_* settings from the developer shell out of tests."""
    for name in ("ANNOSTORE_CORPUS_NAME", "ANNOSTORE_VERIFY_CHECKSUMS", "ANNOSTORE_ENCODING"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return StoreConfig()


@pytest.fixture
def cat_doc():
    """The end-to-end example document."""
    doc = Document("The cat sat.", "doc1")
    doc.annotate(4, 7, "ANIMAL", {"species": "cat"})
    return doc


@pytest.fixture
def sample_docs():
    """Three documents whose names/contents do not sort in insertion order."""
    d1 = Document("zebra crossing", "zz-last-by-name")
    d1.annotate(0, 5, "ANIMAL", {"species": "zebra", "legs": 4})

    d2 = Document("Alice met Bob.", "aa-first-by-name", {"source": "web"})
    d2.annotate(0, 5, "PERSON", {"kind": "human"})
    d2.annotate(10, 13, "PERSON", {"kind": "human", "gender": "male"})
    d2.annotate(0, 13, "SENTENCE")

    d3 = Document("", "mm-empty")
    return [d1, d2, d3]


@pytest.fixture
def registry():
    reg = SchemaRegistry()
    reg.define_schema(
        "PERSON",
        [
            {"name": "kind", "value": "human", "use": "fixed"},
            {"name": "gender", "options": ["male", "female"], "use": "none"},
        ],
    )
    return reg
