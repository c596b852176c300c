# annostore/infra/paths.py
from pathlib import Path
from typing import Union

from annostore.core.config import BASE_DIR

PACKAGE_DIR  = BASE_DIR / "annostore"
RESOURCE_DIR = PACKAGE_DIR / "docstore" / "resources"

# 저장소 디렉토리 내부 레이아웃
MANIFEST_NAME = "manifest.yaml"
DOCUMENTS_DIRNAME = "documents"
SCHEMAS_DIRNAME = "schemas"


def document_filename(index: int) -> str:
    """1부터 시작하는 삽입 순서 번호로 문서 payload 파일명을 만든다."""
    return f"doc-{index:06d}.yaml"


def schema_filename(index: int) -> str:
    return f"schema-{index:04d}.yaml"


def resolve_resource(locator: Union[str, Path]) -> Path:
    """
    스키마 리소스 locator 를 실제 파일 경로로 변환한다.

    1) 파일 시스템 경로로 존재하면 그대로 사용
    2) 아니면 번들 리소스 디렉토리(annostore/docstore/resources)에서 찾는다
    """
    p = Path(locator).expanduser()
    if p.is_file():
        return p

    bundled = RESOURCE_DIR / str(locator)
    if bundled.is_file():
        return bundled

    raise FileNotFoundError(f"스키마 리소스를 찾을 수 없습니다: {locator}")
