from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, List, Optional, Tuple

import yaml

from annostore.core.config import LOG_FORMAT, LOG_LEVEL
from annostore.exceptions import (
    AnnotationStoreError,
    InvalidInputError,
    SchemaParseError,
)
from annostore.infra.yaml_io import load_yaml
from .config import load_config
from .schema import SchemaRegistry
from .schema_xml import schema_to_xml
from .store import AnnotationStore, retrieve_documents
from .types import Document

logger = logging.getLogger(__name__)


def load_documents_yaml(path: Path) -> Tuple[Optional[str], List[Document]]:
    """
    입력 YAML 에서 (corpus_name, 문서 목록)을 만든다.

    corpus_name: 선택
    documents:
      - name: doc1
        text: "The cat sat."
        features: {source: web}
        annotations:
          - {start: 4, end: 7, label: ANIMAL, features: {species: cat}}
    """
    data = load_yaml(path) or {}
    if not isinstance(data, dict) or not isinstance(data.get("documents"), list):
        raise InvalidInputError(f"입력 YAML 에 documents 목록이 없습니다: {path}")

    docs: List[Document] = []
    for i, d in enumerate(data["documents"]):
        if not isinstance(d, dict):
            raise InvalidInputError(f"documents[{i}] 형식 오류: {d!r}")
        doc = Document(d.get("text"), d.get("name"), d.get("features") or None)
        for a in d.get("annotations") or []:
            if not isinstance(a, dict):
                raise InvalidInputError(f"documents[{i}].annotations 형식 오류: {a!r}")
            doc.annotate(a.get("start"), a.get("end"), a.get("label"), a.get("features") or None)
        docs.append(doc)

    return data.get("corpus_name"), docs


def _registry(resources: Optional[List[str]]) -> SchemaRegistry:
    reg = SchemaRegistry()
    for res in resources or []:
        reg.load_schema_from_resource(res)
    return reg


def _print_json(obj: Any) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def cmd_rebuild(args) -> int:
    corpus_name, docs = load_documents_yaml(Path(args.input))
    reg = _registry(args.schema)

    if args.validate:
        violations = [v for d in docs for v in reg.validate(d)]
        if violations:
            print(f"[ERR] schema violations={len(violations)} (store not written)")
            _print_json([asdict(v) for v in violations])
            return 1

    corpus_name = args.corpus or corpus_name or load_config().corpus_name
    with AnnotationStore.rebuild(args.store, docs, corpus_name, reg) as store:
        print(f"[OK] corpus={store.corpus_name}  documents={len(store)}  schemas={len(store.schemas())}")
    print(f"[OK] store_dir={args.store}")
    return 0


def cmd_dump(args) -> int:
    docs = list(retrieve_documents(args.store))
    if args.limit is not None:
        docs = docs[: args.limit]
    _print_json(docs)
    return 0


def cmd_validate(args) -> int:
    _, docs = load_documents_yaml(Path(args.input))
    reg = _registry(args.schema)
    violations = [v for d in docs for v in reg.validate(d)]
    print(f"[OK] documents={len(docs)}  labels={reg.labels()}  violations={len(violations)}")
    if violations:
        _print_json([asdict(v) for v in violations])
        return 1
    return 0


def cmd_export_schema(args) -> int:
    reg = SchemaRegistry()
    schema = reg.load_schema_from_resource(args.schema)
    print(schema_to_xml(schema))
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(description="Build/read directory-backed annotation stores.")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_rb = sub.add_parser("rebuild", help="(Re)create a store from an input YAML. Deletes --store first!")
    p_rb.add_argument("--input", required=True, help="documents yaml path")
    p_rb.add_argument("--store", required=True, help="store directory (removed if it exists)")
    p_rb.add_argument("--corpus", default=None, help="corpus name (default: input yaml / ANNOSTORE_CORPUS_NAME)")
    p_rb.add_argument("--schema", action="append", default=None, help="schema resource (xml/yaml), repeatable")
    p_rb.add_argument("--validate", action="store_true", help="abort when schema violations are found")
    p_rb.set_defaults(func=cmd_rebuild)

    p_dp = sub.add_parser("dump", help="Print stored documents as JSON.")
    p_dp.add_argument("--store", required=True)
    p_dp.add_argument("--limit", type=int, default=None)
    p_dp.set_defaults(func=cmd_dump)

    p_va = sub.add_parser("validate", help="Validate input documents against schemas.")
    p_va.add_argument("--input", required=True)
    p_va.add_argument("--schema", action="append", required=True)
    p_va.set_defaults(func=cmd_validate)

    p_ex = sub.add_parser("export-schema", help="Print a schema resource as GUI XML.")
    p_ex.add_argument("--schema", required=True)
    p_ex.set_defaults(func=cmd_export_schema)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    ap = build_parser()
    args = ap.parse_args(argv)
    try:
        return args.func(args)
    except (InvalidInputError, SchemaParseError, AnnotationStoreError, FileNotFoundError, yaml.YAMLError) as e:
        logger.error("%s 실패: %s", args.cmd, e)
        print(f"[ERR] {type(e).__name__}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
