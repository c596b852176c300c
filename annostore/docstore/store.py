"""
디렉토리 기반 어노테이션 저장소.

레이아웃
--------
    <path>/manifest.yaml              # corpus 이름 + 문서/스키마 목록 (마지막에 기록)
    <path>/documents/doc-000001.yaml  # 문서 1개당 payload 1개, 삽입 순서
    <path>/schemas/schema-0001.yaml   # 스키마 1개당 1개

보장
----
- rebuild 는 기존 디렉토리를 통째로 지운 뒤 새로 쓴다 (파괴적 전제조건)
- manifest 는 모든 payload 가 디스크에 쓰인 뒤 원자적으로 교체된다.
  중간에 실패하면 manifest 가 없으므로 open 은 StoreNotFoundError 를 낸다
- open 은 manifest 가 가리키는 payload 의 존재와 sha256 을 확인한다
  (sha256 대조를 끄면 대신 각 payload 를 YAML 로 파싱해 본다)
- documents() 는 호출할 때마다 처음부터 다시 도는 lazy iterator 를 반환한다

같은 경로에 대한 rebuild 는 프로세스 내에서 경로별 락으로 직렬화한다.
여러 프로세스가 같은 경로를 동시에 rebuild 하는 것은 지원하지 않는다.
"""

from __future__ import annotations

import logging
import shutil
import threading
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import yaml
from pydantic import ValidationError

from annostore.exceptions import (
    CorruptStoreError,
    InvalidInputError,
    SchemaParseError,
    StoreNotFoundError,
    StoreNotOpenError,
)
from annostore.infra.paths import (
    DOCUMENTS_DIRNAME,
    MANIFEST_NAME,
    SCHEMAS_DIRNAME,
    document_filename,
    schema_filename,
)
from annostore.infra.yaml_io import file_sha256, load_yaml, save_yaml
from .codec import (
    DocumentEntry,
    ManifestRecord,
    SchemaEntry,
    decode_document,
    decode_manifest,
    decode_schema,
    encode_document,
    encode_manifest,
    encode_schema,
    new_manifest,
)
from .config import StoreConfig, load_config
from .schema import AnnotationSchema, SchemaRegistry
from .types import Document

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
SchemaSource = Union[SchemaRegistry, Iterable[AnnotationSchema]]


class StoreState(str, Enum):
    UNOPENED = "unopened"
    OPEN = "open"
    CLOSED = "closed"


# =========================
# 경로별 rebuild 락 (프로세스 내)
# =========================
# key -> (lock, 사용 중인 rebuild 수). 사용자가 없으면 항목을 지운다
_process_lock = threading.Lock()
_path_locks: Dict[str, Tuple[threading.Lock, int]] = {}


@contextmanager
def _rebuild_lock(path: Path):
    key = str(path.resolve())
    with _process_lock:
        lock, users = _path_locks.get(key, (None, 0))
        if lock is None:
            lock = threading.Lock()
        _path_locks[key] = (lock, users + 1)
    try:
        with lock:
            yield
    finally:
        with _process_lock:
            lock, users = _path_locks[key]
            if users <= 1:
                del _path_locks[key]
            else:
                _path_locks[key] = (lock, users - 1)


def _delete_recursively(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()


def _check_documents(documents: Iterable[Document]) -> List[Document]:
    if documents is None:
        raise InvalidInputError("documents 는 None 일 수 없습니다.")
    docs = list(documents)
    for i, d in enumerate(docs):
        if not isinstance(d, Document):
            raise InvalidInputError(f"documents[{i}] 이(가) Document 가 아닙니다: {type(d).__name__}")
    return docs


def _check_schemas(schemas: Optional[SchemaSource]) -> List[AnnotationSchema]:
    if schemas is None:
        return []
    if isinstance(schemas, SchemaRegistry):
        return schemas.schemas()

    out: List[AnnotationSchema] = []
    labels = set()
    for s in schemas:
        if not isinstance(s, AnnotationSchema):
            raise InvalidInputError(f"스키마가 AnnotationSchema 가 아닙니다: {type(s).__name__}")
        if s.label in labels:
            raise InvalidInputError(f"같은 라벨의 스키마가 두 번 주어졌습니다: {s.label}")
        labels.add(s.label)
        out.append(s)
    return out


def _encode_all(encode: Callable[[Any], Dict[str, Any]], items: List[Any], what: str) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for i, item in enumerate(items):
        try:
            out.append(encode(item))
        except ValidationError as e:
            raise InvalidInputError(f"{what}[{i}] 을(를) 저장할 수 없습니다: {e}") from e
    return out


class AnnotationStore:
    """
    corpus 하나(문서 목록 + 선택적 스키마)를 디렉토리에 저장/복원하는 저장소.

    상태: UNOPENED -> OPEN -> CLOSED
    rebuild()/open() 으로 OPEN 상태의 인스턴스를 얻는다.
    """

    def __init__(self, path: PathLike, config: Optional[StoreConfig] = None):
        self.path = Path(path)
        self.config = config or load_config()
        self._state = StoreState.UNOPENED
        self._manifest: Optional[ManifestRecord] = None
        self._schemas: List[AnnotationSchema] = []

    def __repr__(self) -> str:
        return f"AnnotationStore(path={str(self.path)!r}, state={self._state.value})"

    def __enter__(self) -> "AnnotationStore":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ---------- lifecycle ----------

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is StoreState.OPEN

    def _require_open(self) -> ManifestRecord:
        if self._state is not StoreState.OPEN or self._manifest is None:
            raise StoreNotOpenError(f"저장소가 열려 있지 않습니다 (state={self._state.value}): {self.path}")
        return self._manifest

    @classmethod
    def rebuild(
        cls,
        path: PathLike,
        documents: Iterable[Document],
        corpus_name: Optional[str] = None,
        schemas: Optional[SchemaSource] = None,
        *,
        config: Optional[StoreConfig] = None,
    ) -> "AnnotationStore":
        """
        path 에 저장소를 새로 만든다.

        **주의**: path 가 이미 있으면 먼저 통째로 삭제한다.
        보존해야 할 데이터가 있는 경로에 호출하면 안 된다.
        """
        store = cls(path, config)
        store._rebuild(documents, corpus_name, schemas)
        return store

    @classmethod
    def open(cls, path: PathLike, *, config: Optional[StoreConfig] = None) -> "AnnotationStore":
        """기존 저장소를 연다."""
        store = cls(path, config)
        store._load()
        return store

    def close(self) -> None:
        """저장소를 닫는다. 여러 번 호출해도 안전하다."""
        if self._state is StoreState.OPEN:
            logger.debug("저장소를 닫습니다: %s", self.path)
        self._manifest = None
        self._schemas = []
        self._state = StoreState.CLOSED

    # ---------- write ----------

    def _rebuild(
        self,
        documents: Iterable[Document],
        corpus_name: Optional[str],
        schemas: Optional[SchemaSource],
    ) -> None:
        # 삭제 전에 입력을 먼저 검증한다
        docs = _check_documents(documents)
        schema_list = _check_schemas(schemas)
        corpus_name = self.config.corpus_name if corpus_name is None else corpus_name
        if not isinstance(corpus_name, str) or not corpus_name.strip():
            raise InvalidInputError(f"corpus 이름이 비어 있습니다: {corpus_name!r}")

        # 피처 값 등 직렬화 가능 여부도 삭제 전에 확인한다
        doc_payloads = _encode_all(encode_document, docs, "documents")
        schema_payloads = _encode_all(encode_schema, schema_list, "schemas")

        encoding = self.config.encoding
        with _rebuild_lock(self.path):
            if self.path.exists() or self.path.is_symlink():
                logger.info("기존 저장소 디렉토리를 삭제합니다: %s", self.path)
                _delete_recursively(self.path)

            try:
                docs_dir = self.path / DOCUMENTS_DIRNAME
                schemas_dir = self.path / SCHEMAS_DIRNAME
                docs_dir.mkdir(parents=True)
                schemas_dir.mkdir()

                manifest = new_manifest(corpus_name)
                for i, (doc, payload) in enumerate(zip(docs, doc_payloads), 1):
                    fname = document_filename(i)
                    digest = save_yaml(docs_dir / fname, payload, encoding=encoding)
                    manifest.documents.append(
                        DocumentEntry(
                            id=Path(fname).stem,
                            name=doc.name,
                            file=f"{DOCUMENTS_DIRNAME}/{fname}",
                            sha256=digest,
                        )
                    )

                for i, (schema, payload) in enumerate(zip(schema_list, schema_payloads), 1):
                    fname = schema_filename(i)
                    digest = save_yaml(schemas_dir / fname, payload, encoding=encoding)
                    manifest.schemas.append(
                        SchemaEntry(
                            label=schema.label,
                            file=f"{SCHEMAS_DIRNAME}/{fname}",
                            sha256=digest,
                        )
                    )

                # ✅ manifest 는 마지막에, 원자적으로
                save_yaml(self.path / MANIFEST_NAME, encode_manifest(manifest), atomic=True, encoding=encoding)
            except Exception:
                logger.exception("저장소 rebuild 실패 (manifest 미기록): %s", self.path)
                raise

        self._manifest = manifest
        self._schemas = schema_list
        self._state = StoreState.OPEN
        logger.info(
            "wrote store at: %s (corpus=%s, documents=%d, schemas=%d)",
            self.path, corpus_name, len(docs), len(schema_list),
        )

    # ---------- read ----------

    def _entry_path(self, rel: str) -> Path:
        root = self.path.resolve()
        p = (self.path / rel).resolve()
        if root not in p.parents:
            raise CorruptStoreError(f"manifest 경로가 저장소 밖을 가리킵니다: {rel}")
        return p

    def _check_payload(self, rel: str, digest: str) -> Path:
        p = self._entry_path(rel)
        if not p.is_file():
            raise CorruptStoreError(f"manifest 가 가리키는 payload 가 없습니다: {p}")
        if self.config.verify_checksums and file_sha256(p) != digest:
            raise CorruptStoreError(f"payload sha256 불일치: {p}")
        return p

    def _read_yaml(self, p: Path) -> Any:
        try:
            return load_yaml(p, encoding=self.config.encoding)
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            raise CorruptStoreError(f"payload 를 읽을 수 없습니다: {p}: {e}") from e

    def _load(self) -> None:
        if not self.path.is_dir():
            raise StoreNotFoundError(f"저장소 디렉토리가 없습니다: {self.path}")
        manifest_path = self.path / MANIFEST_NAME
        if not manifest_path.is_file():
            raise StoreNotFoundError(f"저장소 manifest 가 없습니다: {manifest_path}")

        manifest = decode_manifest(self._read_yaml(manifest_path), source=str(manifest_path))

        for d in manifest.documents:
            p = self._check_payload(d.file, d.sha256)
            if not self.config.verify_checksums:
                # sha256 대조를 끄면 적어도 YAML 로 읽히는지는 확인한다
                self._read_yaml(p)

        schemas: List[AnnotationSchema] = []
        for s in manifest.schemas:
            p = self._check_payload(s.file, s.sha256)
            try:
                schema = decode_schema(self._read_yaml(p), source=str(p))
            except SchemaParseError as e:
                raise CorruptStoreError(str(e)) from e
            if schema.label != s.label:
                raise CorruptStoreError(f"스키마 라벨 불일치: manifest={s.label}, payload={schema.label}")
            schemas.append(schema)

        self._manifest = manifest
        self._schemas = schemas
        self._state = StoreState.OPEN
        logger.info(
            "opened store at: %s (corpus=%s, documents=%d)",
            self.path, manifest.corpus_name, len(manifest.documents),
        )

    def _read_document(self, entry: DocumentEntry) -> Document:
        p = self._entry_path(entry.file)
        if not p.is_file():
            raise CorruptStoreError(f"문서 payload 가 없습니다: {p}")
        doc = decode_document(self._read_yaml(p), source=str(p))
        if doc.name != entry.name:
            raise CorruptStoreError(f"문서 이름 불일치 ({entry.id}): manifest={entry.name}, payload={doc.name}")
        return doc

    def _iter_documents(self, entries: List[DocumentEntry]) -> Iterator[Document]:
        for entry in entries:
            self._require_open()
            yield self._read_document(entry)

    def documents(self) -> Iterator[Document]:
        """rebuild 에 넘긴 순서대로 문서를 하나씩 디코딩하는 iterator."""
        manifest = self._require_open()
        return self._iter_documents(list(manifest.documents))

    def schemas(self) -> List[AnnotationSchema]:
        self._require_open()
        return list(self._schemas)

    def schema_registry(self) -> SchemaRegistry:
        return SchemaRegistry(self.schemas())

    @property
    def corpus_name(self) -> str:
        return self._require_open().corpus_name

    def document_ids(self) -> List[str]:
        return [d.id for d in self._require_open().documents]

    def __len__(self) -> int:
        return len(self._require_open().documents)


# ---------------------------
# 함수형 진입점
# ---------------------------

def rebuild_store(
    path: PathLike,
    documents: Iterable[Document],
    corpus_name: Optional[str] = None,
    schemas: Optional[SchemaSource] = None,
) -> AnnotationStore:
    return AnnotationStore.rebuild(path, documents, corpus_name, schemas)


def open_store(path: PathLike) -> AnnotationStore:
    return AnnotationStore.open(path)


def document_to_map(doc: Document) -> Dict[str, Any]:
    """문서를 이름/본문/어노테이션(덮는 텍스트 포함) dict 로 변환한다."""
    return {
        "name": doc.name,
        "content": doc.content,
        "features": dict(doc.features),
        "annotations": [
            {
                "text": doc.text_for(a),
                "label": a.label,
                "char_range": [a.start, a.end],
                "features": dict(a.features),
            }
            for a in doc.annotations_in_order()
        ],
    }


def retrieve_documents(path: PathLike) -> Iterator[Dict[str, Any]]:
    """
    저장소 문서를 dict 로 하나씩 돌려준다. 다 돌면 저장소를 닫는다.

    각 dict 의 키:
    - name, content, features
    - annotations: [{text, label, char_range: [start, end], features}, ...]
    """
    with AnnotationStore.open(path) as store:
        for doc in store.documents():
            yield document_to_map(doc)
