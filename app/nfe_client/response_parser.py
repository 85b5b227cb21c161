"""
Parser de respuestas SEFAZ (retEnviNFe, retConsReciNFe, retConsStatServ, retEvento...)
"""
from typing import Any, Dict, List, Optional, Union

from lxml import etree

from .xml_utils import localname


def _first_text(node: etree._Element, xpath_expr: str) -> Optional[str]:
    values = node.xpath(xpath_expr)
    if not values:
        return None
    first = values[0]
    txt = first.text if isinstance(first, etree._Element) else str(first)
    if txt is None:
        return None
    txt = txt.strip()
    return txt if txt else None


def _payload_root(xml_root: etree._Element) -> etree._Element:
    """Desenvuelve Envelope/Body/nfeResultMsg hasta el mensaje de retorno"""
    node = xml_root
    if localname(node.tag) == "Envelope":
        body_nodes = node.xpath("./*[local-name()='Body']")
        if not body_nodes:
            return node
        node = body_nodes[0]
        children = [c for c in node if isinstance(c.tag, str)]
        if not children:
            return node
        node = children[0]
    if localname(node.tag) == "nfeResultMsg":
        children = [c for c in node if isinstance(c.tag, str)]
        if children:
            node = children[0]
    return node


def parse_sefaz_response(raw: Union[str, bytes]) -> Dict[str, Any]:
    """
    Extrae los campos relevantes de la respuesta

    Returns:
        Dict con root_tag, cStat, xMotivo, nRec, dhRecbto, protNFe (lista)

    Raises:
        etree.XMLSyntaxError: Si la respuesta no es XML
    """
    xml_bytes = raw.encode("utf-8") if isinstance(raw, str) else raw
    parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)
    root = etree.fromstring(xml_bytes, parser)
    payload = _payload_root(root)

    prot_rows: List[Dict[str, Optional[str]]] = []
    for inf_prot in payload.xpath('.//*[local-name()="protNFe"]/*[local-name()="infProt"]'):
        prot_rows.append(
            {
                "chNFe": _first_text(inf_prot, './*[local-name()="chNFe"]'),
                "cStat": _first_text(inf_prot, './*[local-name()="cStat"]'),
                "xMotivo": _first_text(inf_prot, './*[local-name()="xMotivo"]'),
                "nProt": _first_text(inf_prot, './*[local-name()="nProt"]'),
                "dhRecbto": _first_text(inf_prot, './*[local-name()="dhRecbto"]'),
            }
        )

    return {
        "root_tag": localname(payload.tag),
        "cStat": _first_text(payload, './*[local-name()="cStat"]'),
        "xMotivo": _first_text(payload, './*[local-name()="xMotivo"]'),
        "nRec": _first_text(payload, './/*[local-name()="infRec"]/*[local-name()="nRec"]')
        or _first_text(payload, './*[local-name()="nRec"]'),
        "dhRecbto": _first_text(payload, './*[local-name()="dhRecbto"]'),
        "protNFe": prot_rows,
    }
