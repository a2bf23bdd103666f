"""
Canonical CFDI 4.0 XML generator.

Element order follows cfdv40.xsd, attributes are written in field declaration
order and absent optional fields are omitted. The root always carries the
static namespace declarations of ``Comprobante.NAMESPACES``.
"""
import time
from typing import Dict, Optional, Tuple
from xml.etree.ElementTree import Element, SubElement, tostring
from xml.dom import minidom

from cfdi_generator.core.config import settings
from cfdi_generator.core.logging import audit_logger
from cfdi_generator.schemas.base import CfdiNode, render_value
from cfdi_generator.schemas.document_items import OpaqueExtension
from cfdi_generator.schemas.documents import Comprobante, TimbreFiscalDigital

XML_NAMESPACE = "http://www.w3.org/XML/1998/namespace"
XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

# Child collections written inside a wrapper element (cfdi:Conceptos/cfdi:Concepto)
WRAPPER_ELEMENTS = frozenset({"Conceptos", "Traslados", "Retenciones"})

# Child collections holding extension elements of any namespace
EXTENSION_FIELD = "Extensiones"


class XMLGenerator:
    """
    Deterministic encoder from the node model to CFDI 4.0 XML text.

    Encoding is agnostic to business validity; the document builder decides
    which documents may be encoded for preview or issuance.
    """

    PREFIX = Comprobante.PREFIX
    STATIC_PREFIXES: Dict[str, str] = {uri: prefix for prefix, uri in Comprobante.NAMESPACES}

    def __init__(self, pretty: Optional[bool] = None):
        """
        Initialize XML generator.

        Args:
            pretty: indent the output (defaults to ``settings.PRETTY_XML``)
        """
        self.pretty = settings.PRETTY_XML if pretty is None else pretty

    def generate_xml(self, document: Comprobante, pretty: Optional[bool] = None) -> str:
        """
        Generate the XML text for a document.

        Args:
            document: root node to encode
            pretty: override the instance indentation setting

        Returns:
            XML string with declaration
        """
        start = time.time()

        root = Element(f"{self.PREFIX}:{Comprobante.ELEMENT}")
        for prefix, uri in Comprobante.NAMESPACES:
            root.set(f"xmlns:{prefix}", uri)
        root.set("xsi:schemaLocation", Comprobante.SCHEMA_LOCATION)
        self._write_node(root, document)

        use_pretty = self.pretty if pretty is None else pretty
        if use_pretty:
            xml = self._format_xml(root)
        else:
            xml = XML_DECLARATION + tostring(root, encoding="unicode")

        audit_logger.log_codec_operation(
            "encode", size=len(xml), duration_ms=(time.time() - start) * 1000
        )
        return xml

    def _write_node(self, element: Element, node: CfdiNode) -> None:
        """Write attributes then children of ``node`` onto ``element``."""
        for xml_name, value in node.attribute_items():
            element.set(xml_name, render_value(value))

        for xml_name, name in node.child_fields().items():
            value = getattr(node, name)
            if value is None or value == ():
                continue
            if xml_name == EXTENSION_FIELD:
                for extension in value:
                    self._add_extension(element, extension)
            elif isinstance(value, CfdiNode):
                self._add_node(element, value)
            elif xml_name in WRAPPER_ELEMENTS:
                wrapper = SubElement(element, f"{self.PREFIX}:{xml_name}")
                for item in value:
                    self._add_node(wrapper, item)
            else:
                for item in value:
                    self._add_node(element, item)

    def _add_node(self, parent: Element, node: CfdiNode) -> Element:
        element = SubElement(parent, f"{self.PREFIX}:{node.ELEMENT}")
        self._write_node(element, node)
        return element

    def _add_extension(self, parent: Element, extension: CfdiNode) -> None:
        if isinstance(extension, TimbreFiscalDigital):
            element = SubElement(parent, f"tfd:{extension.ELEMENT}")
            self._write_node(element, extension)
        elif isinstance(extension, OpaqueExtension):
            parent.append(self._localize(extension.element()))
        else:
            raise TypeError(f"Unsupported extension type: {type(extension).__name__}")

    def _localize(self, element: Element) -> Element:
        """
        Rewrite ``{uri}name`` tags of an opaque extension into ``prefix:name``.

        Namespaces declared on the root keep their static prefix; any other
        namespace gets an ``extN`` prefix declared on the extension element.
        """
        declared: Dict[str, str] = {}

        def qualify(name: str) -> str:
            uri, local = split_tag(name)
            if uri is None:
                return local
            prefix = "xml" if uri == XML_NAMESPACE else self.STATIC_PREFIXES.get(uri)
            if prefix is None:
                if uri not in declared:
                    declared[uri] = f"ext{len(declared)}"
                prefix = declared[uri]
            return f"{prefix}:{local}"

        def rewrite(source: Element) -> Element:
            target = Element(qualify(source.tag))
            for key, value in source.attrib.items():
                target.set(qualify(key), value)
            target.text = source.text
            target.tail = source.tail
            for child in source:
                target.append(rewrite(child))
            return target

        localized = rewrite(element)
        localized.tail = None
        declarations = [(f"xmlns:{prefix}", uri) for uri, prefix in declared.items()]
        if declarations:
            attributes = list(localized.attrib.items())
            localized.attrib.clear()
            for key, value in declarations + attributes:
                localized.set(key, value)
        return localized

    def _format_xml(self, root: Element) -> str:
        """Format XML with proper indentation."""
        rough_string = tostring(root, encoding='unicode')

        reparsed = minidom.parseString(rough_string)
        formatted = reparsed.toprettyxml(indent="  ", encoding=None)

        lines = [line for line in formatted.split('\n') if line.strip()]

        # minidom writes its own declaration without the encoding
        if lines[0].startswith('<?xml'):
            lines = lines[1:]

        return XML_DECLARATION + '\n' + '\n'.join(lines)


def encode_document(document: Comprobante, pretty: Optional[bool] = None) -> str:
    """
    Convenience function to encode a document.

    Args:
        document: root node to encode
        pretty: indent the output

    Returns:
        XML string with declaration
    """
    return XMLGenerator(pretty).generate_xml(document)


def split_tag(tag: str) -> Tuple[Optional[str], str]:
    """Split an ElementTree ``{uri}name`` tag into namespace and local name."""
    if tag.startswith("{"):
        uri, local = tag[1:].split("}", 1)
        return uri, local
    return None, tag
