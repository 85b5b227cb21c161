"""
Generador del QR Code de la NFC-e (modelo 65)

Se aplica sobre la NFC-e ya firmada y agrega:

    <infNFeSupl>
        <qrCode><![CDATA[...]]></qrCode>
        <urlChave>...</urlChave>      (solo layout 4.00)
    </infNFeSupl>

entre </infNFe> y <Signature>.

Reglas críticas:
- El CSC NUNCA se incluye en la URL, solo participa del hash
- Versión 1 del QR (layout 3.10): parámetros URL + cHashQRCode
- Versión 2 del QR (layout 4.00): parámetro p= con campos separados por '|'
"""
import hashlib
import logging
from typing import Dict

from lxml import etree

from .endpoint_resolver import parse_version
from .exceptions import NFeInvalidArgumentError, NFeQRCodeError
from .xml_utils import DS_NS, NFE_NS, child_by_local, find_first_by_local, first_text_by_local

logger = logging.getLogger(__name__)


def _sha1_upper(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest().upper()


def _hex(text: str) -> str:
    return text.encode("utf-8").hex()


def _join_url(url_qr: str, query: str) -> str:
    sep = "&" if "?" in url_qr else "?"
    return f"{url_qr}{sep}{query}"


def _document_fields(root: etree._Element) -> Dict[str, str]:
    inf_nfe = find_first_by_local(root, "infNFe")
    if inf_nfe is None:
        raise NFeQRCodeError("Documento sin <infNFe>")
    chave = (inf_nfe.get("Id") or "")[-44:]
    if len(chave) != 44 or not chave.isdigit():
        raise NFeQRCodeError(f"Id de infNFe inválido: {inf_nfe.get('Id')!r}")

    signature = root.find(f".//{{{DS_NS}}}Signature")
    dig_val = ""
    if signature is not None:
        dig_val = first_text_by_local(signature, "DigestValue")

    dest = find_first_by_local(inf_nfe, "dest")
    c_dest = ""
    if dest is not None:
        for tag in ("CNPJ", "CPF", "idEstrangeiro"):
            c_dest = first_text_by_local(dest, tag)
            if c_dest:
                break

    return {
        "chave": chave,
        "tpAmb": first_text_by_local(inf_nfe, "tpAmb"),
        "tpEmis": first_text_by_local(inf_nfe, "tpEmis"),
        "dhEmi": first_text_by_local(inf_nfe, "dhEmi"),
        "vNF": first_text_by_local(inf_nfe, "vNF"),
        "vICMS": first_text_by_local(inf_nfe, "vICMS"),
        "cDest": c_dest,
        "digVal": dig_val,
    }


def build_qr_v100(fields: Dict[str, str], token: str, token_id: str, url_qr: str) -> str:
    """QR versión 1 (layout 3.10)"""
    for name in ("tpAmb", "dhEmi", "vNF", "vICMS", "digVal"):
        if not fields[name]:
            raise NFeQRCodeError(f"Falta {name} para generar el QR Code")
    params = f"chNFe={fields['chave']}&nVersao=100&tpAmb={fields['tpAmb']}"
    if fields["cDest"]:
        params += f"&cDest={fields['cDest']}"
    params += (
        f"&dhEmi={_hex(fields['dhEmi'])}"
        f"&vNF={fields['vNF']}"
        f"&vICMS={fields['vICMS']}"
        f"&digVal={_hex(fields['digVal'])}"
        f"&cIdToken={token_id}"
    )
    c_hash = _sha1_upper(params + token)
    return _join_url(url_qr, f"{params}&cHashQRCode={c_hash}")


def build_qr_v200(fields: Dict[str, str], token: str, token_id: str, url_qr: str) -> str:
    """QR versión 2 (layout 4.00); emisión offline (tpEmis=9) lleva día, valor y digVal"""
    if not fields["tpAmb"]:
        raise NFeQRCodeError("Falta tpAmb para generar el QR Code")
    id_csc = str(int(token_id))
    if fields["tpEmis"] == "9":
        for name in ("dhEmi", "vNF", "digVal"):
            if not fields[name]:
                raise NFeQRCodeError(f"Falta {name} para generar el QR Code offline")
        dia = fields["dhEmi"][8:10]
        try:
            valor = f"{float(fields['vNF']):.2f}"
        except ValueError:
            raise NFeQRCodeError(f"vNF inválido: {fields['vNF']!r}") from None
        seq = f"{fields['chave']}|2|{fields['tpAmb']}|{dia}|{valor}|{_hex(fields['digVal']).upper()}|{id_csc}"
    else:
        seq = f"{fields['chave']}|2|{fields['tpAmb']}|{id_csc}"
    return _join_url(url_qr, f"p={seq}|{_sha1_upper(seq + token)}")


def put_qr_tag(
    root: etree._Element,
    token: str,
    token_id: str,
    uf: str,
    version: str,
    url_qr: str,
    url_chave: str = "",
) -> etree._Element:
    """
    Agrega (o reemplaza) infNFeSupl en la NFC-e firmada

    Args:
        root: Documento firmado (<NFe>)
        token: CSC
        token_id: Identificador del CSC (numérico)
        uf: Sigla de la UF emisora
        version: Versión del layout ('3.10' o '4.00')
        url_qr: URL de consulta del QR Code de la UF
        url_chave: URL de consulta por chave (layout 4.00)

    Raises:
        NFeQRCodeError: Faltan CSC, id del CSC, URL o campos del documento
    """
    if not token:
        raise NFeQRCodeError("CSC no especificado para la NFC-e")
    if not token_id or not str(token_id).strip().isdigit():
        raise NFeQRCodeError(f"Id del CSC inválido: {token_id!r}")
    if not url_qr:
        raise NFeQRCodeError(f"URL de QR Code no disponible para {uf}")
    try:
        layout = parse_version(version)
    except NFeInvalidArgumentError as e:
        raise NFeQRCodeError(str(e)) from e

    fields = _document_fields(root)
    if layout < (4, 0):
        qr_url = build_qr_v100(fields, token, str(token_id).strip(), url_qr)
    else:
        qr_url = build_qr_v200(fields, token, str(token_id).strip(), url_qr)

    inf_nfe = find_first_by_local(root, "infNFe")
    parent = inf_nfe.getparent()
    if parent is None:
        raise NFeQRCodeError("<infNFe> no puede ser la raíz del documento")
    previous = child_by_local(parent, "infNFeSupl")
    if previous is not None:
        parent.remove(previous)

    ns = etree.QName(inf_nfe).namespace or NFE_NS
    supl = etree.Element(f"{{{ns}}}infNFeSupl")
    etree.SubElement(supl, f"{{{ns}}}qrCode").text = etree.CDATA(qr_url)
    if layout >= (4, 0):
        if not url_chave:
            raise NFeQRCodeError(f"urlChave no disponible para {uf}")
        etree.SubElement(supl, f"{{{ns}}}urlChave").text = url_chave
    inf_nfe.addnext(supl)

    logger.info(f"QR Code agregado a la NFC-e {fields['chave']} ({uf}, layout {version})")
    return root
