# annostore/exceptions.py
"""
프로젝트 전역에서 공통으로 사용하는 예외 정의 모듈.

- InvalidInputError     : 문서/피처 생성 인자가 잘못된 경우
- AnnotationRangeError  : 어노테이션 span 범위 오류 (역전, 음수, 본문 초과)
- DuplicateFeatureError : 하나의 스키마 안에 같은 피처 이름이 중복
- SchemaParseError      : 스키마 리소스(XML/YAML) 파싱 실패
- StoreNotOpenError     : 열려 있지 않은 저장소에 대한 조작
- StoreNotFoundError    : 경로에 유효한 저장소 manifest 가 없음
- CorruptStoreError     : manifest 가 가리키는 payload 누락/손상
"""


class InvalidInputError(ValueError):
    """문서 텍스트, 라벨, 피처 값 등 생성 인자 검증 실패."""
    pass


class AnnotationRangeError(InvalidInputError):
    """어노테이션 [start, end) 구간이 본문 범위를 벗어나거나 역전된 경우."""
    pass


class DuplicateFeatureError(ValueError):
    """스키마 정의에서 피처 이름이 중복된 경우."""
    pass


class SchemaParseError(ValueError):
    """스키마 리소스 형식이 잘못된 경우."""
    pass


class AnnotationStoreError(RuntimeError):
    """저장소 관련 오류의 공통 부모."""
    pass


class StoreNotOpenError(AnnotationStoreError):
    """OPEN 상태가 아닌 저장소에서 읽기를 시도한 경우."""
    pass


class StoreNotFoundError(AnnotationStoreError):
    """저장소 디렉토리 또는 manifest 파일이 없는 경우."""
    pass


class CorruptStoreError(AnnotationStoreError):
    """manifest 는 있으나 문서/스키마 payload 가 없거나 읽을 수 없는 경우."""
    pass
