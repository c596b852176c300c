from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union

from annostore.exceptions import DuplicateFeatureError, InvalidInputError, SchemaParseError
from annostore.infra.paths import resolve_resource
from .types import Document

logger = logging.getLogger(__name__)


class FeatureUse(str, Enum):
    """피처 값 사용 방식.

    - DEFAULT: default_value 는 기본값일 뿐, 다른 값도 허용
    - FIXED: 값은 반드시 default_value 와 같아야 함
    - NONE: 사용 방식 지정 없음
    """

    DEFAULT = "default"
    FIXED = "fixed"
    NONE = "none"

    @classmethod
    def parse(cls, raw: Any) -> "FeatureUse":
        # default/fixed 외의 값(optional, required, "" 등)은 모두 NONE
        if isinstance(raw, FeatureUse):
            return raw
        if raw is None:
            return cls.DEFAULT
        s = str(raw).strip().lower()
        if s == "default":
            return cls.DEFAULT
        if s == "fixed":
            return cls.FIXED
        return cls.NONE


@dataclass(frozen=True)
class FeatureSchema:
    """어노테이션 라벨 하나에 속한 피처 정의."""

    name: str
    default_value: str
    use: FeatureUse = FeatureUse.DEFAULT
    allowed_values: Optional[FrozenSet[str]] = None

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name:
            raise InvalidInputError(f"피처 이름은 비어있지 않은 문자열이어야 합니다: {self.name!r}")
        object.__setattr__(self, "use", FeatureUse.parse(self.use))
        if self.allowed_values is not None and not isinstance(self.allowed_values, frozenset):
            object.__setattr__(self, "allowed_values", frozenset(self.allowed_values))
        if (
            self.use is FeatureUse.FIXED
            and self.allowed_values is not None
            and self.default_value not in self.allowed_values
        ):
            raise InvalidInputError(
                f"fixed 피처 '{self.name}' 의 값 '{self.default_value}' 이(가) 허용값 목록에 없습니다."
            )


@dataclass(frozen=True)
class AnnotationSchema:
    """라벨과 그 라벨에 허용되는 피처 정의 목록."""

    label: str
    features: Tuple[FeatureSchema, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.label, str) or not self.label:
            raise InvalidInputError(f"스키마 라벨은 비어있지 않은 문자열이어야 합니다: {self.label!r}")
        seen = set()
        for f in self.features:
            if f.name in seen:
                raise DuplicateFeatureError(
                    f"스키마 '{self.label}' 에 피처 '{f.name}' 이(가) 중복 정의되었습니다."
                )
            seen.add(f.name)

    def feature(self, name: str) -> Optional[FeatureSchema]:
        for f in self.features:
            if f.name == name:
                return f
        return None

    @property
    def feature_names(self) -> List[str]:
        return [f.name for f in self.features]


@dataclass(frozen=True)
class SchemaViolation:
    """validate() 결과 항목."""

    document: Optional[str]
    ordinal: int
    label: str
    feature: str
    message: str


def feature_schema_from_spec(spec: Mapping[str, Any]) -> FeatureSchema:
    """{name, value?, use?, options?} 형태의 명세를 FeatureSchema 로 변환한다.

    - use 기본값은 default
    - value 가 없으면 "<name>-value"
    """
    if not isinstance(spec, Mapping) or "name" not in spec:
        raise InvalidInputError(f"피처 명세에는 name 이 필요합니다: {spec!r}")
    name = spec["name"]
    value = spec.get("value")
    options = spec.get("options")
    return FeatureSchema(
        name=name,
        default_value=str(value) if value is not None else f"{name}-value",
        use=FeatureUse.parse(spec.get("use")),
        allowed_values=frozenset(str(o) for o in options) if options else None,
    )


def build_schema(label: str, feature_specs: Optional[Iterable[Mapping[str, Any]]] = None) -> AnnotationSchema:
    """레지스트리에 등록하지 않고 AnnotationSchema 만 만든다."""
    return AnnotationSchema(
        label=label,
        features=tuple(feature_schema_from_spec(s) for s in (feature_specs or [])),
    )


class SchemaRegistry:
    """
    라벨 -> AnnotationSchema 레지스트리.

    전역 상태 없이 호출자가 직접 만들어 넘긴다. 스키마는 작성 단계의
    선택적 메타데이터이므로 등록되지 않은 라벨은 검증하지 않는다.
    """

    def __init__(self, schemas: Optional[Iterable[AnnotationSchema]] = None):
        self._schemas: Dict[str, AnnotationSchema] = {}
        for s in schemas or []:
            self.register(s)

    def __contains__(self, label: object) -> bool:
        return label in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def register(self, schema: AnnotationSchema) -> AnnotationSchema:
        if schema.label in self._schemas:
            logger.warning("스키마 '%s' 을(를) 새 정의로 교체합니다.", schema.label)
        self._schemas[schema.label] = schema
        return schema

    def get(self, label: str) -> Optional[AnnotationSchema]:
        return self._schemas.get(label)

    def labels(self) -> List[str]:
        return list(self._schemas)

    def schemas(self) -> List[AnnotationSchema]:
        return list(self._schemas.values())

    def define_schema(
        self,
        label: str,
        feature_specs: Optional[Iterable[Mapping[str, Any]]] = None,
    ) -> AnnotationSchema:
        """라벨과 피처 명세 목록으로 스키마를 만들어 등록한다."""
        return self.register(build_schema(label, feature_specs))

    def load_schema_from_resource(self, locator: Union[str, Path]) -> AnnotationSchema:
        """
        스키마 리소스(XML 또는 YAML)를 읽어 등록한다.

        locator 는 파일 경로이거나 번들 리소스 이름(예: "person.xml").
        """
        path = resolve_resource(locator)
        suffix = path.suffix.lower()
        if suffix == ".xml":
            from .schema_xml import parse_schema_xml

            schema = parse_schema_xml(path.read_text(encoding="utf-8"), source=str(path))
        elif suffix in (".yaml", ".yml"):
            from .codec import load_schema_yaml

            schema = load_schema_yaml(path)
        else:
            raise SchemaParseError(f"지원하지 않는 스키마 리소스 형식입니다: {path.name}")

        logger.info("스키마 리소스 로드: %s (label=%s)", path, schema.label)
        return self.register(schema)

    def validate(self, document: Document) -> List[SchemaViolation]:
        """
        등록된 라벨의 어노테이션에 대해 피처를 검사한다.

        - 스키마에 없는 피처 키
        - fixed 피처 값이 기본값과 다른 경우
        - 허용값 목록(allowed_values) 밖의 값
        """
        out: List[SchemaViolation] = []
        for ann in document.annotations_in_order():
            schema = self._schemas.get(ann.label)
            if schema is None:
                continue

            def _add(feature: str, message: str) -> None:
                out.append(
                    SchemaViolation(
                        document=document.name,
                        ordinal=ann.ordinal,
                        label=ann.label,
                        feature=feature,
                        message=message,
                    )
                )

            for key, value in ann.features.items():
                fs = schema.feature(key)
                if fs is None:
                    _add(key, f"스키마 '{schema.label}' 에 정의되지 않은 피처입니다.")
                    continue
                sval = _as_schema_value(value)
                if fs.use is FeatureUse.FIXED and sval != fs.default_value:
                    _add(key, f"fixed 값 '{fs.default_value}' 이(가) 필요하지만 '{sval}' 입니다.")
                elif fs.allowed_values is not None and sval not in fs.allowed_values:
                    _add(key, f"허용되지 않는 값 '{sval}' (허용: {sorted(fs.allowed_values)})")
        return out


def _as_schema_value(value: Any) -> str:
    # 스키마 값은 문자열로 정의되므로 bool 은 소문자로 비교한다
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
