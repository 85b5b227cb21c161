"""
Utilidades para manejo y limpieza de XML NF-e
"""
import re
import unicodedata
from typing import List, Optional, Union

from lxml import etree

NFE_NS = "http://www.portalfiscal.inf.br/nfe"
DS_NS = "http://www.w3.org/2000/09/xmldsig#"

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'

# Caracteres de control inválidos en XML 1.0 (se conservan \t \n \r para tratarlos aparte)
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_XML_DECL_RE = re.compile(r"^\s*<\?xml[^>]*\?>\s*", re.I)

XmlInput = Union[str, bytes, etree._Element]


def clear_xml_string(xml_content: str, remove_declaration: bool = False) -> str:
    """
    Limpia el XML crudo antes de firmar o enviar

    Reglas:
    1. Remueve BOM y caracteres de control inválidos
    2. Remueve saltos de línea, carriage return y tabs
    3. Remueve espacios entre etiquetas
    4. Opcionalmente remueve la declaración XML

    Args:
        xml_content: Contenido XML crudo
        remove_declaration: Si True, elimina <?xml ...?>

    Returns:
        XML limpio
    """
    if not xml_content:
        return ""
    xml_clean = xml_content.lstrip("\ufeff")
    xml_clean = _CONTROL_CHARS_RE.sub("", xml_clean)
    xml_clean = re.sub(r"[\r\n\t]+", "", xml_clean)
    xml_clean = re.sub(r">\s+<", "><", xml_clean)
    xml_clean = xml_clean.replace(' standalone="no"', "")
    if remove_declaration:
        xml_clean = _XML_DECL_RE.sub("", xml_clean, count=1)
    return xml_clean.strip()


def clean_string(text: str) -> str:
    """
    Sanitiza texto libre para campos del layout (ej: xJust)

    Quita acentos, caracteres de control y espacios repetidos.
    """
    if not text:
        return ""
    normalized = unicodedata.normalize("NFKD", text)
    ascii_text = "".join(c for c in normalized if not unicodedata.combining(c))
    ascii_text = ascii_text.encode("ascii", "ignore").decode("ascii")
    ascii_text = _CONTROL_CHARS_RE.sub("", ascii_text)
    return re.sub(r"\s+", " ", ascii_text).strip()


def localname(tag) -> str:
    """Devuelve localname de un tag QName."""
    if not isinstance(tag, str):
        return ""
    if "}" in tag:
        return tag.rsplit("}", 1)[-1]
    return tag


def find_first_by_local(root: etree._Element, name: str) -> Optional[etree._Element]:
    for el in root.iter():
        if localname(el.tag) == name:
            return el
    return None


def find_all_by_local(root: etree._Element, name: str) -> List[etree._Element]:
    return [el for el in root.iter() if localname(el.tag) == name]


def first_text_by_local(root: etree._Element, name: str, default: str = "") -> str:
    el = find_first_by_local(root, name)
    if el is None or el.text is None:
        return default
    return el.text.strip()


def child_by_local(parent: etree._Element, name: str) -> Optional[etree._Element]:
    """Primer hijo directo con el localname dado"""
    for el in parent:
        if localname(el.tag) == name:
            return el
    return None


def parse_xml(xml: XmlInput) -> etree._Element:
    """
    Parsea XML (str, bytes o Element ya parseado) a un Element lxml.

    Raises:
        etree.XMLSyntaxError: Si el XML no es parseable
    """
    if isinstance(xml, etree._Element):
        return xml
    if isinstance(xml, str):
        xml = xml.encode("utf-8")
    parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)
    return etree.fromstring(xml, parser)


def to_xml_string(root: etree._Element, xml_declaration: bool = True) -> str:
    body = etree.tostring(root, encoding="unicode")
    if xml_declaration:
        return XML_DECLARATION + body
    return body
