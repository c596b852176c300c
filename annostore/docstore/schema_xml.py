"""
GATE 형식 XML 어노테이션 스키마 읽기/쓰기.

데스크톱 GUI 가 읽는 스키마 파일과 같은 레이아웃을 사용한다.

    <schema xmlns="http://www.w3.org/2000/10/XMLSchema">
      <element name="Person">
        <complexType>
          <attribute name="kind" use="fixed" value="human"/>
          <attribute name="gender" use="optional">
            <simpleType>
              <restriction base="string">
                <enumeration value="male"/>
                <enumeration value="female"/>
              </restriction>
            </simpleType>
          </attribute>
        </complexType>
      </element>
    </schema>

XSD 표준 형식의 fixed="..." / default="..." 속성도 읽는다.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from typing import List, Optional
from xml.dom import minidom

from annostore.exceptions import InvalidInputError, SchemaParseError
from .schema import AnnotationSchema, FeatureSchema, FeatureUse

logger = logging.getLogger(__name__)

XML_SCHEMA_NAMESPACE = "http://www.w3.org/2000/10/XMLSchema"


def _local(tag: str) -> str:
    """'{ns}element' -> 'element'"""
    if "}" in tag:
        return tag.rsplit("}", 1)[1]
    return tag


def _children(el: ET.Element, name: str) -> List[ET.Element]:
    return [c for c in el if isinstance(c.tag, str) and _local(c.tag) == name]


def _find_all(el: ET.Element, name: str) -> List[ET.Element]:
    return [c for c in el.iter() if isinstance(c.tag, str) and _local(c.tag) == name]


def _parse_attribute(attr: ET.Element, label: str) -> FeatureSchema:
    name = attr.get("name")
    if not name:
        raise SchemaParseError(f"스키마 '{label}' 의 attribute 에 name 이 없습니다.")

    use_raw = attr.get("use")
    value = attr.get("value")
    if attr.get("fixed") is not None:
        use_raw, value = "fixed", attr.get("fixed")
    elif attr.get("default") is not None:
        use_raw, value = "default", attr.get("default")

    options = [e.get("value") for e in _find_all(attr, "enumeration") if e.get("value") is not None]

    try:
        return FeatureSchema(
            name=name,
            default_value=value if value is not None else f"{name}-value",
            use=FeatureUse.parse(use_raw if use_raw is not None else ""),
            allowed_values=frozenset(options) if options else None,
        )
    except InvalidInputError as e:
        raise SchemaParseError(str(e)) from e


def parse_schema_xml(text: str, source: Optional[str] = None) -> AnnotationSchema:
    """XML 스키마 문자열을 AnnotationSchema 로 변환한다. 첫 번째 element 만 사용한다."""
    where = source or "<string>"
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise SchemaParseError(f"XML 파싱 실패 ({where}): {e}") from e

    if _local(root.tag) != "schema":
        raise SchemaParseError(f"루트 요소가 schema 가 아닙니다 ({where}): {_local(root.tag)}")

    elements = _children(root, "element")
    if not elements:
        raise SchemaParseError(f"element 정의가 없습니다 ({where})")
    if len(elements) > 1:
        logger.warning("%s: element %d개 중 첫 번째만 사용합니다.", where, len(elements))

    element = elements[0]
    label = element.get("name")
    if not label:
        raise SchemaParseError(f"element 에 name 이 없습니다 ({where})")

    # attribute 는 complexType 바로 아래에 온다. 속성 없는 라벨도 허용
    attrs: List[ET.Element] = []
    for ct in _children(element, "complexType"):
        attrs.extend(_children(ct, "attribute"))

    try:
        return AnnotationSchema(
            label=label,
            features=tuple(_parse_attribute(a, label) for a in attrs),
        )
    except SchemaParseError:
        raise
    except ValueError as e:
        # DuplicateFeatureError / InvalidInputError
        raise SchemaParseError(f"{where}: {e}") from e


def schema_to_xml(schema: AnnotationSchema) -> str:
    """AnnotationSchema 를 GUI 가 읽을 수 있는 XML 문자열로 변환한다."""
    root = ET.Element("schema", {"xmlns": XML_SCHEMA_NAMESPACE})
    element = ET.SubElement(root, "element", {"name": schema.label})
    ct = ET.SubElement(element, "complexType")

    for f in schema.features:
        attrib = {"name": f.name, "type": "string"}
        if f.use is FeatureUse.NONE:
            attrib["use"] = "optional"
        else:
            attrib["use"] = f.use.value
        attrib["value"] = f.default_value
        attr = ET.SubElement(ct, "attribute", attrib)

        if f.allowed_values:
            st = ET.SubElement(attr, "simpleType")
            restriction = ET.SubElement(st, "restriction", {"base": "string"})
            for v in sorted(f.allowed_values):
                ET.SubElement(restriction, "enumeration", {"value": v})

    raw = ET.tostring(root, encoding="unicode")
    return minidom.parseString(raw).toprettyxml(indent="  ")
