from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_CORPUS_NAME = "default-corpus"


@dataclass
class StoreConfig:
    """
    저장소 동작 설정.

    - corpus_name: rebuild 시 corpus 이름을 주지 않았을 때의 기본값
    - verify_checksums: open 시 payload sha256 을 manifest 와 대조할지 여부
    - encoding: payload 파일 인코딩
    """

    corpus_name: str = DEFAULT_CORPUS_NAME
    verify_checksums: bool = True
    encoding: str = "utf-8"


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def load_config() -> StoreConfig:
    """
    ANNOSTORE_* 환경변수 기준으로 저장소 설정 로드

    환경변수
    - ANNOSTORE_CORPUS_NAME (default: default-corpus)
    - ANNOSTORE_VERIFY_CHECKSUMS (default: 1)
    - ANNOSTORE_ENCODING (default: utf-8)
    """
    corpus_name = os.getenv("ANNOSTORE_CORPUS_NAME", "").strip() or DEFAULT_CORPUS_NAME

    return StoreConfig(
        corpus_name=corpus_name,
        verify_checksums=_env_bool("ANNOSTORE_VERIFY_CHECKSUMS", True),
        encoding=os.getenv("ANNOSTORE_ENCODING", "utf-8"),
    )
