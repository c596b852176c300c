"""Directory-backed annotation store.

Public entrypoints:
- Document / create_document / annotate_document
- SchemaRegistry (define_schema, load_schema_from_resource, validate)
- AnnotationStore.rebuild(path, documents, corpus_name, schemas)
- AnnotationStore.open(path).documents()
"""

from .types import (
    Annotation,
    AnnotationHandle,
    Document,
    FeatureMap,
    annotate_document,
    create_document,
)
from .schema import (
    AnnotationSchema,
    FeatureSchema,
    FeatureUse,
    SchemaRegistry,
    SchemaViolation,
)
from .schema_xml import parse_schema_xml, schema_to_xml
from .store import (
    AnnotationStore,
    StoreState,
    open_store,
    rebuild_store,
    retrieve_documents,
)

__all__ = [
    "Annotation",
    "AnnotationHandle",
    "Document",
    "FeatureMap",
    "annotate_document",
    "create_document",
    "AnnotationSchema",
    "FeatureSchema",
    "FeatureUse",
    "SchemaRegistry",
    "SchemaViolation",
    "parse_schema_xml",
    "schema_to_xml",
    "AnnotationStore",
    "StoreState",
    "open_store",
    "rebuild_store",
    "retrieve_documents",
]
