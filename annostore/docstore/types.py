from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from annostore.exceptions import AnnotationRangeError, InvalidInputError

# 피처 값으로 허용하는 스칼라 타입 (YAML 직렬화 가능)
FeatureValue = Union[str, int, float, bool]
_SCALAR_TYPES = (str, int, float, bool)


def _check_feature(key: Any, value: Any) -> None:
    if not isinstance(key, str):
        raise InvalidInputError(f"피처 키는 문자열이어야 합니다: {key!r}")
    if not isinstance(value, _SCALAR_TYPES):
        raise InvalidInputError(
            f"피처 '{key}' 값은 str/int/float/bool 이어야 합니다: {type(value).__name__}"
        )


class FeatureMap(dict):
    """문서/어노테이션에 붙는 순서 있는 key -> value 맵.

    - 삽입 순서를 유지한다 (직렬화 결과가 결정적이도록)
    - merge 는 키 충돌 시 나중 값이 이긴다 (last-write-wins)
    - get 은 키가 없으면 None 을 반환한다 (예외로 흐름 제어하지 않음)
    """

    def __init__(self, initial: Optional[Mapping[str, FeatureValue]] = None):
        super().__init__()
        if initial:
            self.merge(initial)

    def __setitem__(self, key: str, value: FeatureValue) -> None:
        _check_feature(key, value)
        super().__setitem__(key, value)

    def put(self, key: str, value: FeatureValue) -> None:
        self[key] = value

    def merge(self, other: Mapping[str, FeatureValue]) -> "FeatureMap":
        for k, v in other.items():
            self[k] = v
        return self

    # dict.update / setdefault 는 __setitem__ 을 거치지 않으므로 직접 연결
    def update(self, *args: Any, **kwargs: Any) -> None:
        self.merge(dict(*args, **kwargs))

    def setdefault(self, key: str, default: FeatureValue = None) -> FeatureValue:
        if key not in self:
            self[key] = default
        return self[key]

    def copy(self) -> "FeatureMap":
        return FeatureMap(self)

    def __repr__(self) -> str:
        return f"FeatureMap({dict.__repr__(self)})"


@dataclass(frozen=True)
class AnnotationHandle:
    """annotate() 가 돌려주는 참조값.

    - ordinal: 문서 안에서의 생성 순번 (0부터 증가)
    - label: 어노테이션 라벨
    """

    ordinal: int
    label: str


@dataclass(frozen=True)
class Annotation:
    """문서 본문 기준의 문자 단위 라벨 span.

    - start: 포함(inclusive)
    - end: 제외(exclusive)
    - ordinal: 문서 내 생성 순번. 같은 span 이라도 생성 순서로 정렬된다
    - features: 어노테이션 피처 맵
    """

    ordinal: int
    label: str
    start: int
    end: int
    features: FeatureMap = field(default_factory=FeatureMap)

    @property
    def handle(self) -> AnnotationHandle:
        return AnnotationHandle(ordinal=self.ordinal, label=self.label)

    @property
    def char_range(self) -> Tuple[int, int]:
        return (self.start, self.end)


class Document:
    """텍스트 본문 + 이름 + 순서 있는 어노테이션 목록.

    본문(content)은 생성 후 바꿀 수 없다. 어노테이션은 annotate() 로만 추가되며,
    외부에는 피처 맵 사본을 가진 Annotation 만 노출한다.
    """

    def __init__(
        self,
        text: str,
        name: Optional[str] = None,
        features: Optional[Mapping[str, FeatureValue]] = None,
    ):
        if text is None or not isinstance(text, str):
            raise InvalidInputError("문서 텍스트는 None 이 아닌 문자열이어야 합니다.")
        if name is not None and not isinstance(name, str):
            raise InvalidInputError(f"문서 이름은 문자열이어야 합니다: {name!r}")

        self._content = text
        self.name = name
        self.features = features
        self._annotations: List[Annotation] = []
        self._next_ordinal = 0

    @property
    def content(self) -> str:
        return self._content

    @property
    def features(self) -> FeatureMap:
        return self._features

    @features.setter
    def features(self, value: Optional[Mapping[str, FeatureValue]]) -> None:
        self._features = FeatureMap(value)

    def __repr__(self) -> str:
        return (
            f"Document(name={self.name!r}, length={len(self._content)}, "
            f"annotations={len(self._annotations)})"
        )

    def _check_span(self, start: Any, end: Any) -> None:
        if isinstance(start, bool) or isinstance(end, bool):
            raise InvalidInputError("start/end 는 정수여야 합니다.")
        if not isinstance(start, int) or not isinstance(end, int):
            raise InvalidInputError(f"start/end 는 정수여야 합니다: ({start!r}, {end!r})")
        # 길이 0 span 은 텍스트를 덮지 않으므로 거부한다
        if start < 0 or end > len(self._content) or start >= end:
            raise AnnotationRangeError(
                f"잘못된 span [{start}, {end}) (본문 길이 {len(self._content)})"
            )

    def annotate(
        self,
        start: int,
        end: int,
        label: str,
        features: Optional[Mapping[str, FeatureValue]] = None,
    ) -> AnnotationHandle:
        """본문 [start, end) 구간에 label 어노테이션을 추가하고 handle 을 반환한다."""
        if not isinstance(label, str) or not label:
            raise InvalidInputError(f"어노테이션 라벨은 비어있지 않은 문자열이어야 합니다: {label!r}")
        self._check_span(start, end)

        ann = Annotation(
            ordinal=self._next_ordinal,
            label=label,
            start=start,
            end=end,
            features=FeatureMap(features),
        )
        self._annotations.append(ann)
        self._next_ordinal += 1
        return ann.handle

    def _restore(self, annotation: Annotation) -> None:
        """저장소에서 읽은 어노테이션을 순번 그대로 복원한다. (codec 전용)"""
        if not isinstance(annotation.label, str) or not annotation.label:
            raise InvalidInputError("어노테이션 라벨이 비어 있습니다.")
        self._check_span(annotation.start, annotation.end)
        if annotation.ordinal < self._next_ordinal:
            raise InvalidInputError(
                f"어노테이션 순번이 증가하지 않습니다: {annotation.ordinal} < {self._next_ordinal}"
            )
        self._annotations.append(annotation)
        self._next_ordinal = annotation.ordinal + 1

    def annotations_in_order(self) -> List[Annotation]:
        """생성 순번 순서의 어노테이션 목록 (피처 맵은 사본)."""
        return [replace(a, features=a.features.copy()) for a in self._annotations]

    def annotation(self, ref: Union[AnnotationHandle, int]) -> Annotation:
        ordinal = ref.ordinal if isinstance(ref, AnnotationHandle) else ref
        for a in self._annotations:
            if a.ordinal == ordinal:
                return replace(a, features=a.features.copy())
        raise KeyError(f"어노테이션 순번 {ordinal} 이(가) 없습니다.")

    def text_for(self, annotation: Union[Annotation, AnnotationHandle, int]) -> str:
        """어노테이션이 덮는 본문 텍스트를 반환한다."""
        if not isinstance(annotation, Annotation):
            annotation = self.annotation(annotation)
        return self._content[annotation.start:annotation.end]

    def labels(self) -> List[str]:
        """등장 순서대로 중복 없는 라벨 목록."""
        seen: Dict[str, None] = {}
        for a in self._annotations:
            seen.setdefault(a.label, None)
        return list(seen)


def create_document(text: str, name: Optional[str] = None) -> Document:
    """원문 텍스트로 문서를 만든다. annotate_document() 로 어노테이션을 붙인다."""
    return Document(text, name)


def annotate_document(
    start: int,
    end: int,
    label: str,
    doc: Document,
    features: Optional[Mapping[str, FeatureValue]] = None,
) -> Document:
    """doc 의 [start, end) 구간에 label 어노테이션을 붙이고 문서를 그대로 반환한다."""
    doc.annotate(start, end, label, features)
    return doc

