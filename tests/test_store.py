"""
Tests for AnnotationStore.

Validates:
- Round trip of documents and schemas
- Insertion-order retrieval, restartable lazy iteration
- Destructive rebuild (no artifacts of the previous corpus)
- Lifecycle: UNOPENED -> OPEN -> CLOSED
- Failures: missing store, missing/altered payload, half-written store
"""

import logging
import threading

import pytest
import yaml

from annostore.docstore.config import StoreConfig
from annostore.docstore.schema import SchemaRegistry, build_schema
from annostore.docstore.store import (
    AnnotationStore,
    StoreState,
    open_store,
    rebuild_store,
    retrieve_documents,
)
from annostore.docstore.types import Document
from annostore.exceptions import (
    CorruptStoreError,
    InvalidInputError,
    StoreNotFoundError,
    StoreNotOpenError,
)


def _snapshot(doc):
    return (
        doc.name,
        doc.content,
        dict(doc.features),
        [(a.ordinal, a.label, a.start, a.end, dict(a.features)) for a in doc.annotations_in_order()],
    )


class TestRoundTrip:
    """Test rebuild -> open round trips."""

    def test_end_to_end_example(self, tmp_path, cat_doc):
        store_dir = tmp_path / "store1"
        AnnotationStore.rebuild(store_dir, [cat_doc], "corpus1").close()

        store = AnnotationStore.open(store_dir)
        docs = list(store.documents())

        assert store.corpus_name == "corpus1"
        assert len(docs) == 1
        doc = docs[0]
        assert doc.name == "doc1"
        assert doc.content == "The cat sat."
        anns = doc.annotations_in_order()
        assert len(anns) == 1
        assert anns[0].label == "ANIMAL"
        assert (anns[0].start, anns[0].end) == (4, 7)
        assert anns[0].features == {"species": "cat"}
        assert doc.text_for(anns[0]) == "cat"

    def test_round_trip_preserves_everything(self, tmp_path, sample_docs):
        store_dir = tmp_path / "s"
        AnnotationStore.rebuild(store_dir, sample_docs, "c").close()

        with AnnotationStore.open(store_dir) as store:
            back = list(store.documents())

        assert [_snapshot(d) for d in back] == [_snapshot(d) for d in sample_docs]

    def test_tricky_text_round_trips(self, tmp_path):
        text = "line1\n  indented\ttab\r\nwindows  \n\n한국어 텍스트 😀 'quote' \"dq\" : - # yes no null 1e3 "
        doc = Document(text, "no")
        doc.annotate(0, 5, "LINE", {"flag": "yes", "num": "007", "null": "null"})
        doc.annotate(len(text) - 3, len(text), "TAIL")
        AnnotationStore.rebuild(tmp_path / "s", [doc]).close()

        back = next(AnnotationStore.open(tmp_path / "s").documents())
        assert _snapshot(back) == _snapshot(doc)

    @pytest.mark.parametrize("text", ["a\x85b", "line\u2028sep\u2029para", "\x85"])
    def test_unicode_line_breaks_round_trip(self, tmp_path, text):
        doc = Document(text, "n\x85m", {"note": "x\x85y"})
        doc.annotate(0, 1, "FIRST", {"note": "\x85"})
        AnnotationStore.rebuild(tmp_path / "s", [doc]).close()

        back = next(AnnotationStore.open(tmp_path / "s").documents())
        assert _snapshot(back) == _snapshot(doc)

    def test_unnamed_document(self, tmp_path):
        AnnotationStore.rebuild(tmp_path / "s", [Document("x")]).close()
        back = next(AnnotationStore.open(tmp_path / "s").documents())
        assert back.name is None

    def test_empty_corpus(self, tmp_path):
        store = AnnotationStore.rebuild(tmp_path / "s", [], "empty")
        assert len(store) == 0
        store.close()

        reopened = AnnotationStore.open(tmp_path / "s")
        assert list(reopened.documents()) == []
        assert reopened.corpus_name == "empty"

    def test_schemas_round_trip(self, tmp_path, cat_doc, registry):
        animal = build_schema("ANIMAL", [{"name": "species"}])
        registry.register(animal)
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc], "c", registry).close()

        store = AnnotationStore.open(tmp_path / "s")
        assert store.schemas() == registry.schemas()
        assert store.schema_registry().labels() == ["PERSON", "ANIMAL"]

    def test_schema_list_is_accepted(self, tmp_path, cat_doc):
        schemas = [build_schema("A"), build_schema("B", [{"name": "x", "use": "fixed", "value": "1"}])]
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc], schemas=schemas).close()
        assert AnnotationStore.open(tmp_path / "s").schemas() == schemas

    def test_default_corpus_name(self, tmp_path, cat_doc):
        store = AnnotationStore.rebuild(tmp_path / "s", [cat_doc])
        assert store.corpus_name == "default-corpus"

    def test_corpus_name_from_env(self, tmp_path, cat_doc, monkeypatch):
        monkeypatch.setenv("ANNOSTORE_CORPUS_NAME", "env-corpus")
        store = AnnotationStore.rebuild(tmp_path / "s", [cat_doc])
        assert store.corpus_name == "env-corpus"

    def test_function_entrypoints(self, tmp_path, cat_doc):
        rebuild_store(tmp_path / "s", [cat_doc], "c").close()
        store = open_store(tmp_path / "s")
        assert store.document_ids() == ["doc-000001"]

    def test_retrieve_documents_maps(self, tmp_path, cat_doc):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc], "c").close()
        maps = list(retrieve_documents(tmp_path / "s"))
        assert maps == [
            {
                "name": "doc1",
                "content": "The cat sat.",
                "features": {},
                "annotations": [
                    {"text": "cat", "label": "ANIMAL", "char_range": [4, 7], "features": {"species": "cat"}}
                ],
            }
        ]


class TestOrdering:
    """Test insertion-order retrieval."""

    def test_documents_in_insertion_order(self, tmp_path, sample_docs):
        AnnotationStore.rebuild(tmp_path / "s", sample_docs).close()
        names = [d.name for d in AnnotationStore.open(tmp_path / "s").documents()]
        assert names == ["zz-last-by-name", "aa-first-by-name", "mm-empty"]

    def test_many_documents_keep_order(self, tmp_path):
        docs = [Document(f"text {i}", f"d{(i * 7919) % 1000:03d}") for i in range(50)]
        AnnotationStore.rebuild(tmp_path / "s", docs).close()
        back = [d.name for d in AnnotationStore.open(tmp_path / "s").documents()]
        assert back == [d.name for d in docs]

    def test_documents_is_restartable(self, tmp_path, sample_docs):
        store = AnnotationStore.rebuild(tmp_path / "s", sample_docs)
        first = [d.name for d in store.documents()]
        second = [d.name for d in store.documents()]
        assert first == second == [d.name for d in sample_docs]

    def test_documents_is_lazy(self, tmp_path, sample_docs):
        store = AnnotationStore.rebuild(tmp_path / "s", sample_docs)
        it = store.documents()
        assert next(it).name == "zz-last-by-name"

        # a payload removed after the first read only fails when reached
        (tmp_path / "s" / "documents" / "doc-000003.yaml").unlink()
        assert next(it).name == "aa-first-by-name"
        with pytest.raises(CorruptStoreError):
            next(it)

    def test_concurrent_readers(self, tmp_path, sample_docs):
        AnnotationStore.rebuild(tmp_path / "s", sample_docs).close()
        store = AnnotationStore.open(tmp_path / "s")
        results = []

        def read():
            results.append([d.name for d in store.documents()])

        threads = [threading.Thread(target=read) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results == [[d.name for d in sample_docs]] * 4


class TestDestructiveRebuild:
    """Test that rebuild replaces the previous store completely."""

    def test_second_rebuild_replaces_first(self, tmp_path, sample_docs, cat_doc):
        store_dir = tmp_path / "s"
        AnnotationStore.rebuild(store_dir, sample_docs, "first").close()
        (store_dir / "stray.txt").write_text("left over", encoding="utf-8")

        AnnotationStore.rebuild(store_dir, [cat_doc], "second").close()

        store = AnnotationStore.open(store_dir)
        assert store.corpus_name == "second"
        assert [d.name for d in store.documents()] == ["doc1"]
        assert not (store_dir / "stray.txt").exists()
        assert sorted(p.name for p in (store_dir / "documents").iterdir()) == ["doc-000001.yaml"]

    def test_delete_is_logged(self, tmp_path, cat_doc, caplog):
        store_dir = tmp_path / "s"
        store_dir.mkdir()
        with caplog.at_level(logging.INFO, logger="annostore.docstore.store"):
            AnnotationStore.rebuild(store_dir, [cat_doc]).close()
        assert str(store_dir) in caplog.text

    def test_existing_file_at_path_is_replaced(self, tmp_path, cat_doc):
        target = tmp_path / "s"
        target.write_text("not a directory", encoding="utf-8")
        AnnotationStore.rebuild(target, [cat_doc]).close()
        assert target.is_dir()

    def test_invalid_input_keeps_existing_store(self, tmp_path, cat_doc):
        store_dir = tmp_path / "s"
        AnnotationStore.rebuild(store_dir, [cat_doc], "keep").close()

        with pytest.raises(InvalidInputError):
            AnnotationStore.rebuild(store_dir, [cat_doc, "not a document"])

        assert AnnotationStore.open(store_dir).corpus_name == "keep"

    def test_unstorable_document_keeps_existing_store(self, tmp_path, cat_doc):
        store_dir = tmp_path / "s"
        AnnotationStore.rebuild(store_dir, [cat_doc], "keep").close()

        bad = Document("abc")
        bad.name = 42
        with pytest.raises(InvalidInputError):
            AnnotationStore.rebuild(store_dir, [cat_doc, bad])

        bad = Document("abc", "bad")
        dict.__setitem__(bad.features, "k", [1, 2])
        with pytest.raises(InvalidInputError):
            AnnotationStore.rebuild(store_dir, [bad])

        assert AnnotationStore.open(store_dir).corpus_name == "keep"

    def test_rebuild_locks_are_released(self, tmp_path, cat_doc):
        import annostore.docstore.store as store_mod

        for i in range(3):
            AnnotationStore.rebuild(tmp_path / f"s{i}", [cat_doc]).close()
        assert store_mod._path_locks == {}

    @pytest.mark.parametrize("name", ["", "   ", 42])
    def test_bad_corpus_name(self, tmp_path, cat_doc, name):
        with pytest.raises(InvalidInputError):
            AnnotationStore.rebuild(tmp_path / "s", [cat_doc], name)

    def test_none_documents(self, tmp_path):
        with pytest.raises(InvalidInputError):
            AnnotationStore.rebuild(tmp_path / "s", None)

    def test_duplicate_schema_labels(self, tmp_path, cat_doc):
        with pytest.raises(InvalidInputError):
            AnnotationStore.rebuild(tmp_path / "s", [cat_doc], schemas=[build_schema("A"), build_schema("A")])

    def test_generator_input(self, tmp_path):
        docs = (Document(f"t{i}", f"n{i}") for i in range(3))
        store = AnnotationStore.rebuild(tmp_path / "s", docs)
        assert [d.name for d in store.documents()] == ["n0", "n1", "n2"]

    def test_failed_write_leaves_unopenable_store(self, tmp_path, sample_docs, monkeypatch):
        import annostore.docstore.store as store_mod

        real_save = store_mod.save_yaml
        calls = {"n": 0}

        def flaky(path, data, **kwargs):
            calls["n"] += 1
            if calls["n"] == 2:
                raise OSError("disk full")
            return real_save(path, data, **kwargs)

        monkeypatch.setattr(store_mod, "save_yaml", flaky)
        with pytest.raises(OSError):
            AnnotationStore.rebuild(tmp_path / "s", sample_docs)

        assert (tmp_path / "s" / "documents" / "doc-000001.yaml").exists()
        with pytest.raises(StoreNotFoundError):
            AnnotationStore.open(tmp_path / "s")


class TestLifecycle:
    """Test the UNOPENED -> OPEN -> CLOSED state machine."""

    def test_rebuild_returns_open_store(self, tmp_path, cat_doc):
        store = AnnotationStore.rebuild(tmp_path / "s", [cat_doc])
        assert store.state is StoreState.OPEN
        assert store.is_open

    def test_unopened_store_rejects_reads(self, tmp_path):
        store = AnnotationStore(tmp_path / "s")
        assert store.state is StoreState.UNOPENED
        with pytest.raises(StoreNotOpenError):
            store.documents()
        with pytest.raises(StoreNotOpenError):
            store.schemas()
        with pytest.raises(StoreNotOpenError):
            store.corpus_name

    def test_closed_store_rejects_reads(self, tmp_path, cat_doc):
        store = AnnotationStore.rebuild(tmp_path / "s", [cat_doc])
        store.close()
        assert store.state is StoreState.CLOSED
        with pytest.raises(StoreNotOpenError):
            store.documents()
        with pytest.raises(StoreNotOpenError):
            len(store)

    def test_close_is_idempotent(self, tmp_path, cat_doc):
        store = AnnotationStore.rebuild(tmp_path / "s", [cat_doc])
        store.close()
        store.close()
        assert store.state is StoreState.CLOSED

    def test_iterator_stops_after_close(self, tmp_path, sample_docs):
        store = AnnotationStore.rebuild(tmp_path / "s", sample_docs)
        it = store.documents()
        next(it)
        store.close()
        with pytest.raises(StoreNotOpenError):
            next(it)

    def test_context_manager_closes(self, tmp_path, cat_doc):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc]).close()
        with AnnotationStore.open(tmp_path / "s") as store:
            assert store.is_open
        assert store.state is StoreState.CLOSED


class TestOpenFailures:
    """Test open() failure modes."""

    def test_nonexistent_path(self, tmp_path):
        with pytest.raises(StoreNotFoundError):
            AnnotationStore.open(tmp_path / "missing")

    def test_directory_without_manifest(self, tmp_path):
        (tmp_path / "s").mkdir()
        with pytest.raises(StoreNotFoundError):
            AnnotationStore.open(tmp_path / "s")

    def test_missing_payload(self, tmp_path, sample_docs):
        AnnotationStore.rebuild(tmp_path / "s", sample_docs).close()
        (tmp_path / "s" / "documents" / "doc-000002.yaml").unlink()
        with pytest.raises(CorruptStoreError):
            AnnotationStore.open(tmp_path / "s")

    def test_missing_schema_payload(self, tmp_path, cat_doc, registry):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc], schemas=registry).close()
        (tmp_path / "s" / "schemas" / "schema-0001.yaml").unlink()
        with pytest.raises(CorruptStoreError):
            AnnotationStore.open(tmp_path / "s")

    def test_altered_payload(self, tmp_path, cat_doc):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc]).close()
        p = tmp_path / "s" / "documents" / "doc-000001.yaml"
        p.write_text(p.read_text(encoding="utf-8").replace("cat", "dog"), encoding="utf-8")
        with pytest.raises(CorruptStoreError):
            AnnotationStore.open(tmp_path / "s")

    def test_unparsable_payload_without_checksums(self, tmp_path, cat_doc):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc]).close()
        (tmp_path / "s" / "documents" / "doc-000001.yaml").write_text(": : [unclosed", encoding="utf-8")

        with pytest.raises(CorruptStoreError):
            AnnotationStore.open(tmp_path / "s", config=StoreConfig(verify_checksums=False))

    def test_unparsable_payload_with_checksums_disabled_by_env(self, tmp_path, cat_doc, monkeypatch):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc]).close()
        (tmp_path / "s" / "documents" / "doc-000001.yaml").write_text(": : [unclosed", encoding="utf-8")
        monkeypatch.setenv("ANNOSTORE_VERIFY_CHECKSUMS", "0")

        with pytest.raises(CorruptStoreError):
            AnnotationStore.open(tmp_path / "s")

    def test_edited_but_parsable_payload_without_checksums(self, tmp_path, cat_doc):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc]).close()
        p = tmp_path / "s" / "documents" / "doc-000001.yaml"
        p.write_text(p.read_text(encoding="utf-8").replace("The cat", "One cat"), encoding="utf-8")

        store = AnnotationStore.open(tmp_path / "s", config=StoreConfig(verify_checksums=False))
        assert next(store.documents()).content == "One cat sat."

    def test_malformed_manifest(self, tmp_path, cat_doc):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc]).close()
        (tmp_path / "s" / "manifest.yaml").write_text("documents: {not: [a list\n", encoding="utf-8")
        with pytest.raises(CorruptStoreError):
            AnnotationStore.open(tmp_path / "s")

    def test_manifest_pointing_outside_store(self, tmp_path, cat_doc):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc]).close()
        manifest_path = tmp_path / "s" / "manifest.yaml"
        data = yaml.safe_load(manifest_path.read_text(encoding="utf-8"))
        data["documents"][0]["file"] = "../outside.yaml"
        manifest_path.write_text(yaml.safe_dump(data), encoding="utf-8")
        with pytest.raises(CorruptStoreError):
            AnnotationStore.open(tmp_path / "s")

    def test_manifest_name_mismatch(self, tmp_path, cat_doc):
        AnnotationStore.rebuild(tmp_path / "s", [cat_doc]).close()
        manifest_path = tmp_path / "s" / "manifest.yaml"
        data = yaml.safe_load(manifest_path.read_text(encoding="utf-8"))
        data["documents"][0]["name"] = "renamed"
        manifest_path.write_text(yaml.safe_dump(data), encoding="utf-8")

        store = AnnotationStore.open(tmp_path / "s")
        with pytest.raises(CorruptStoreError):
            list(store.documents())

    def test_on_disk_layout(self, tmp_path, sample_docs, registry):
        AnnotationStore.rebuild(tmp_path / "s", sample_docs, "c", registry).close()
        root = tmp_path / "s"
        assert (root / "manifest.yaml").is_file()
        assert not (root / "manifest.yaml.tmp").exists()
        assert sorted(p.name for p in (root / "documents").iterdir()) == [
            "doc-000001.yaml",
            "doc-000002.yaml",
            "doc-000003.yaml",
        ]
        assert [p.name for p in (root / "schemas").iterdir()] == ["schema-0001.yaml"]

        manifest = yaml.safe_load((root / "manifest.yaml").read_text(encoding="utf-8"))
        assert manifest["corpus_name"] == "c"
        assert [d["name"] for d in manifest["documents"]] == [d.name for d in sample_docs]
        assert manifest["schemas"][0]["label"] == "PERSON"
