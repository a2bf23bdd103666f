"""
CFDI 4.0 XML parser.

Maps elements and attributes onto the node model without running any
business rule; callers validate explicitly after decoding. Anything that
cannot be mapped aborts with StructuralError.
"""
import time
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Type, Union, get_args, get_origin

from pydantic import ValidationError

from cfdi_generator.core.logging import audit_logger
from cfdi_generator.schemas.base import CfdiNode
from cfdi_generator.schemas.document_items import ComplementoConcepto, OpaqueExtension
from cfdi_generator.schemas.documents import (
    CFDI_NAMESPACE, TFD_NAMESPACE, XSI_NAMESPACE, Complemento, Comprobante, TimbreFiscalDigital
)
from cfdi_generator.utils.error_responses import StructuralError
from cfdi_generator.utils.xml_generator import EXTENSION_FIELD, WRAPPER_ELEMENTS, split_tag

SCHEMA_LOCATION_ATTRIBUTE = f"{{{XSI_NAMESPACE}}}schemaLocation"


def _join(path: str, name: str) -> str:
    return f"{path}.{name}" if path else name


def _node_type(annotation: Any) -> Optional[Type[CfdiNode]]:
    """First node class referenced by a field annotation."""
    if get_origin(annotation) is not None:
        for arg in get_args(annotation):
            found = _node_type(arg)
            if found is not None:
                return found
        return None
    if isinstance(annotation, type) and issubclass(annotation, CfdiNode):
        return annotation
    return None


class XMLParser:
    """Structural decoder from CFDI 4.0 XML text to the node model."""

    def parse(self, xml: Union[str, bytes]) -> Comprobante:
        """
        Decode a document.

        Args:
            xml: XML text or UTF-8 bytes

        Returns:
            Unvalidated Comprobante tree

        Raises:
            StructuralError: malformed XML or content outside the node model
        """
        start = time.time()
        try:
            document = self._parse(xml)
        except StructuralError as e:
            audit_logger.log_codec_operation(
                "decode", size=len(xml), duration_ms=(time.time() - start) * 1000, error_message=e.message
            )
            raise

        audit_logger.log_codec_operation(
            "decode", size=len(xml), duration_ms=(time.time() - start) * 1000
        )
        return document

    def _parse(self, xml: Union[str, bytes]) -> Comprobante:
        try:
            root = ET.fromstring(xml)
        except ET.ParseError as e:
            raise StructuralError(f"Malformed XML: {e}") from e

        if root.tag != f"{{{CFDI_NAMESPACE}}}{Comprobante.ELEMENT}":
            raise StructuralError(
                f"Root element must be cfdi:Comprobante in {CFDI_NAMESPACE}, found {root.tag}",
                suggestions=["Only CFDI 4.0 documents can be decoded"],
            )
        return self._build(root, Comprobante, "")

    def _build(self, element: ET.Element, node_type: Type[CfdiNode], path: str) -> CfdiNode:
        values: Dict[str, Any] = {}
        self._read_attributes(element, node_type, path, values)

        if element.text and element.text.strip():
            raise StructuralError(f"{node_type.ELEMENT} cannot contain text", path=path)

        children = node_type.child_fields()
        for child in element:
            if node_type in (Complemento, ComplementoConcepto):
                self._read_extension(child, node_type, path, values)
                continue

            namespace, local = split_tag(child.tag)
            name = children.get(local)
            if namespace != CFDI_NAMESPACE or name is None or local == EXTENSION_FIELD:
                raise StructuralError(
                    f"Unexpected element {child.tag} in {node_type.ELEMENT}", path=_join(path, local)
                )

            field_info = node_type.model_fields[name]
            item_type = _node_type(field_info.annotation)
            is_sequence = get_origin(field_info.annotation) is tuple

            if not is_sequence:
                if name in values:
                    raise StructuralError(f"Element {local} appears more than once", path=_join(path, local))
                values[name] = self._build(child, item_type, _join(path, local))
            elif local in WRAPPER_ELEMENTS:
                if name in values:
                    raise StructuralError(f"Element {local} appears more than once", path=_join(path, local))
                values[name] = self._read_wrapper(child, item_type, _join(path, local))
            else:
                items: List[CfdiNode] = values.setdefault(name, [])
                items.append(self._build(child, item_type, f"{_join(path, local)}[{len(items)}]"))

        try:
            return node_type.model_validate(values)
        except ValidationError as e:
            error = e.errors()[0]
            location = str(error["loc"][0]) if error["loc"] else ""
            xml_names = {name: info.alias or name for name, info in node_type.model_fields.items()}
            if location in xml_names:
                location = xml_names[location]
            where = _join(path, location) if location else path
            raise StructuralError(f"Invalid value in {node_type.ELEMENT or 'extension'}: {error['msg']}", path=where) from e

    def _read_attributes(
        self, element: ET.Element, node_type: Type[CfdiNode], path: str, values: Dict[str, Any]
    ) -> None:
        attributes = node_type.attribute_fields()
        for key, text in element.attrib.items():
            if key == SCHEMA_LOCATION_ATTRIBUTE:
                continue
            name = attributes.get(key)
            if name is None:
                raise StructuralError(
                    f"Unknown attribute {key} on {node_type.ELEMENT}", path=_join(path, key)
                )
            values[name] = text

    def _read_wrapper(self, wrapper: ET.Element, item_type: Type[CfdiNode], path: str) -> List[CfdiNode]:
        if wrapper.attrib:
            raise StructuralError(f"{split_tag(wrapper.tag)[1]} cannot carry attributes", path=path)
        items = []
        for index, child in enumerate(wrapper):
            namespace, local = split_tag(child.tag)
            if namespace != CFDI_NAMESPACE or local != item_type.ELEMENT:
                raise StructuralError(
                    f"Expected {item_type.ELEMENT}, found {child.tag}", path=f"{path}[{index}]"
                )
            items.append(self._build(child, item_type, f"{path}[{index}]"))
        return items

    def _read_extension(
        self, child: ET.Element, container: Type[CfdiNode], path: str, values: Dict[str, Any]
    ) -> None:
        extensions = values.setdefault(container.child_fields()[EXTENSION_FIELD], [])
        extension_path = f"{_join(path, EXTENSION_FIELD)}[{len(extensions)}]"

        if container is Complemento and child.tag == f"{{{TFD_NAMESPACE}}}{TimbreFiscalDigital.ELEMENT}":
            extensions.append(self._build(child, TimbreFiscalDigital, extension_path))
            return

        child.tail = None
        try:
            extensions.append(OpaqueExtension(raw=ET.tostring(child)))
        except ValidationError as e:
            raise StructuralError(f"Invalid extension content: {e.errors()[0]['msg']}", path=extension_path) from e


def decode_document(xml: Union[str, bytes]) -> Comprobante:
    """
    Convenience function to decode a document.

    Args:
        xml: XML text or bytes

    Returns:
        Unvalidated Comprobante tree
    """
    return XMLParser().parse(xml)
