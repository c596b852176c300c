"""Document / Schema / Manifest <-> YAML 레코드 변환.

디스크 레코드는 pydantic 모델로 검증한다. 저장소 payload 가 깨져 있으면
CorruptStoreError, 스키마 리소스가 깨져 있으면 SchemaParseError 를 낸다.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

import yaml
from pydantic import BaseModel, Field, StrictBool, StrictFloat, StrictInt, StrictStr, ValidationError

from annostore.exceptions import CorruptStoreError, InvalidInputError, SchemaParseError
from annostore.infra.yaml_io import load_yaml
from .schema import AnnotationSchema, FeatureSchema, FeatureUse
from .types import Annotation, Document, FeatureMap

FORMAT_VERSION = 1

# bool 이 int 로, int 가 float 로 바뀌지 않도록 strict 타입만 허용
ScalarValue = Union[StrictBool, StrictInt, StrictFloat, StrictStr]


# ---------------------------
# 레코드 스키마
# ---------------------------

class FeatureSchemaRecord(BaseModel):
    name: str
    value: str
    use: Literal["default", "fixed", "none"] = "default"
    options: Optional[List[str]] = None


class SchemaRecord(BaseModel):
    label: str
    features: List[FeatureSchemaRecord] = Field(default_factory=list)


class AnnotationRecord(BaseModel):
    ordinal: int = Field(..., ge=0)
    label: str
    start: int
    end: int
    features: Dict[str, ScalarValue] = Field(default_factory=dict)


class DocumentRecord(BaseModel):
    name: Optional[str] = None
    content: str
    features: Dict[str, ScalarValue] = Field(default_factory=dict)
    annotations: List[AnnotationRecord] = Field(default_factory=list)


class DocumentEntry(BaseModel):
    id: str
    name: Optional[str] = None
    file: str
    sha256: str


class SchemaEntry(BaseModel):
    label: str
    file: str
    sha256: str


class ManifestRecord(BaseModel):
    """저장소 최상위 manifest. 문서 payload 가 모두 기록된 뒤 마지막에 쓴다."""

    format_version: int
    corpus_name: str
    created_at: str
    documents: List[DocumentEntry] = Field(default_factory=list)
    schemas: List[SchemaEntry] = Field(default_factory=list)


# ---------------------------
# Document
# ---------------------------

def encode_document(doc: Document) -> Dict[str, Any]:
    rec = DocumentRecord(
        name=doc.name,
        content=doc.content,
        features=dict(doc.features),
        annotations=[
            AnnotationRecord(
                ordinal=a.ordinal,
                label=a.label,
                start=a.start,
                end=a.end,
                features=dict(a.features),
            )
            for a in doc.annotations_in_order()
        ],
    )
    return rec.model_dump()


def decode_document(data: Any, source: str = "<document>") -> Document:
    try:
        rec = DocumentRecord.model_validate(data)
    except ValidationError as e:
        raise CorruptStoreError(f"문서 payload 형식 오류 ({source}): {e}") from e

    try:
        doc = Document(rec.content, rec.name, rec.features)
        for a in rec.annotations:
            doc._restore(
                Annotation(
                    ordinal=a.ordinal,
                    label=a.label,
                    start=a.start,
                    end=a.end,
                    features=FeatureMap(a.features),
                )
            )
    except InvalidInputError as e:
        raise CorruptStoreError(f"문서 payload 값 오류 ({source}): {e}") from e
    return doc


# ---------------------------
# Schema
# ---------------------------

def encode_schema(schema: AnnotationSchema) -> Dict[str, Any]:
    rec = SchemaRecord(
        label=schema.label,
        features=[
            FeatureSchemaRecord(
                name=f.name,
                value=f.default_value,
                use=f.use.value,
                options=sorted(f.allowed_values) if f.allowed_values is not None else None,
            )
            for f in schema.features
        ],
    )
    return rec.model_dump()


def decode_schema(data: Any, source: str = "<schema>") -> AnnotationSchema:
    """레코드를 AnnotationSchema 로 변환한다. 실패 시 SchemaParseError."""
    try:
        rec = SchemaRecord.model_validate(data)
    except ValidationError as e:
        raise SchemaParseError(f"스키마 형식 오류 ({source}): {e}") from e

    try:
        return AnnotationSchema(
            label=rec.label,
            features=tuple(
                FeatureSchema(
                    name=f.name,
                    default_value=f.value,
                    use=FeatureUse(f.use),
                    allowed_values=frozenset(f.options) if f.options is not None else None,
                )
                for f in rec.features
            ),
        )
    except ValueError as e:
        raise SchemaParseError(f"스키마 값 오류 ({source}): {e}") from e


def load_schema_yaml(path: Path) -> AnnotationSchema:
    try:
        data = load_yaml(path)
    except yaml.YAMLError as e:
        raise SchemaParseError(f"YAML 파싱 실패 ({path}): {e}") from e
    return decode_schema(data, source=str(path))


# ---------------------------
# Manifest
# ---------------------------

def new_manifest(corpus_name: str) -> ManifestRecord:
    return ManifestRecord(
        format_version=FORMAT_VERSION,
        corpus_name=corpus_name,
        created_at=datetime.now(timezone.utc).isoformat(timespec="seconds"),
    )


def encode_manifest(manifest: ManifestRecord) -> Dict[str, Any]:
    return manifest.model_dump()


def decode_manifest(data: Any, source: str = "<manifest>") -> ManifestRecord:
    try:
        manifest = ManifestRecord.model_validate(data)
    except ValidationError as e:
        raise CorruptStoreError(f"manifest 형식 오류 ({source}): {e}") from e

    if manifest.format_version != FORMAT_VERSION:
        raise CorruptStoreError(
            f"지원하지 않는 저장소 포맷 버전입니다 ({source}): {manifest.format_version}"
        )
    ids = [d.id for d in manifest.documents]
    if len(ids) != len(set(ids)):
        raise CorruptStoreError(f"manifest 에 중복된 문서 id 가 있습니다 ({source})")
    return manifest
