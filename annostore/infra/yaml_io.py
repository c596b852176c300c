# annostore/infra/yaml_io.py
import hashlib
import os
from pathlib import Path
from typing import Any

import yaml


# 일반 quoted scalar 안에서는 줄바꿈으로 읽히므로 double-quoted 로 이스케이프한다
_LINE_BREAK_CHARS = ("\x85", "\u2028", "\u2029")


class _PayloadDumper(yaml.SafeDumper):
    pass


def _represent_str(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    if any(ch in data for ch in _LINE_BREAK_CHARS):
        return dumper.represent_scalar("tag:yaml.org,2002:str", data, style='"')
    return dumper.represent_str(data)


_PayloadDumper.add_representer(str, _represent_str)


def dump_yaml_text(data: Any) -> str:
    """파이썬 객체를 YAML 문자열로 직렬화한다. (키 순서 유지)"""
    return yaml.dump(
        data,
        Dumper=_PayloadDumper,
        allow_unicode=True,
        sort_keys=False,
        default_flow_style=False,
    )


def load_yaml(path: Path, encoding: str = "utf-8") -> Any:
    """YAML 파일을 로드하여 파이썬 객체로 반환한다."""
    if not path.exists():
        raise FileNotFoundError(f"YAML 파일을 찾을 수 없습니다: {path}")

    with path.open("r", encoding=encoding) as f:
        return yaml.safe_load(f)


def save_yaml(path: Path, data: Any, *, atomic: bool = False, encoding: str = "utf-8") -> str:
    """파이썬 객체를 YAML 파일로 저장하고, 기록한 바이트의 sha256 을 반환한다.

    atomic=True 이면 같은 디렉토리의 임시 파일에 먼저 쓰고 os.replace 로 교체한다.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = dump_yaml_text(data).encode(encoding)

    target = path.with_name(path.name + ".tmp") if atomic else path
    with target.open("wb") as f:
        f.write(payload)
        f.flush()
        os.fsync(f.fileno())
    if atomic:
        os.replace(target, path)

    return hashlib.sha256(payload).hexdigest()


def file_sha256(path: Path, chunk_size: int = 1 << 16) -> str:
    """파일 내용을 스트리밍으로 읽어 sha256 hexdigest 를 계산한다."""
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()
