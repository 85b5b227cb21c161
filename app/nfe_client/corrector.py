"""
Corrección de la NF-e para el modo de contingencia vigente

Con contingencia activa, antes de firmar:
- se remueve la firma existente
- ide/tpEmis pasa al código del modo
- se informan ide/dhCont e ide/xJust
- la chave (Id de infNFe) se recalcula con el nuevo tpEmis y su DV, e ide/cDV acompaña
"""
import logging
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from lxml import etree

from . import chave_utils
from .config import TIMEZONE_BY_UF, get_sigla
from .contingency import ContingencySnapshot
from .exceptions import NFeInvalidArgumentError, NFeMalformedDocumentError
from .xml_signer import remove_signature
from .xml_utils import child_by_local, clean_string, find_first_by_local

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Sao_Paulo"


def format_dh_cont(moment: datetime, c_uf: Optional[str] = None) -> str:
    """
    Formatea dhCont como AAAA-MM-DDThh:mm:ss±hh:mm en el huso de la UF.

    Un datetime sin tzinfo se interpreta como hora local de la UF.
    """
    tz_name = DEFAULT_TIMEZONE
    if c_uf:
        try:
            tz_name = TIMEZONE_BY_UF.get(get_sigla(c_uf), DEFAULT_TIMEZONE)
        except NFeInvalidArgumentError:
            logger.warning(f"cUF desconocido en ide ({c_uf!r}); dhCont en {DEFAULT_TIMEZONE}")
    tz = ZoneInfo(tz_name)
    if moment.tzinfo is None:
        local = moment.replace(tzinfo=tz)
    else:
        local = moment.astimezone(tz)
    return local.replace(microsecond=0).isoformat()


def _set_or_insert(
    ide: etree._Element,
    name: str,
    value: str,
    after: Optional[etree._Element] = None,
    before: Optional[etree._Element] = None,
) -> etree._Element:
    el = child_by_local(ide, name)
    if el is not None:
        el.text = value
        return el

    ns = etree.QName(ide).namespace
    el = etree.Element(f"{{{ns}}}{name}" if ns else name)
    el.text = value
    if after is not None:
        after.addnext(el)
        return el
    if before is not None:
        before.addprevious(el)
        return el
    # dhCont/xJust van antes de los NFref
    nfref = child_by_local(ide, "NFref")
    if nfref is not None:
        nfref.addprevious(el)
    else:
        ide.append(el)
    return el


def correct_for_contingency(root: etree._Element, state: ContingencySnapshot) -> etree._Element:
    """
    Aplica la contingencia `state` al documento (in place)

    Sin contingencia devuelve el mismo elemento sin tocarlo.

    Raises:
        NFeMalformedDocumentError: Faltan infNFe, ide o tpEmis, o el Id no
            contiene una chave de 44 dígitos
    """
    if not state.active:
        return root

    inf_nfe = find_first_by_local(root, "infNFe")
    if inf_nfe is None:
        raise NFeMalformedDocumentError("Documento sin <infNFe>")
    ide = child_by_local(inf_nfe, "ide")
    if ide is None:
        raise NFeMalformedDocumentError("Documento sin <ide>")
    tp_emis = child_by_local(ide, "tpEmis")
    if tp_emis is None:
        raise NFeMalformedDocumentError("Documento sin <ide>/<tpEmis>")

    try:
        prefix, chave = chave_utils.split_id(inf_nfe.get("Id", ""))
    except ValueError as e:
        raise NFeMalformedDocumentError(str(e)) from e

    remove_signature(root)

    tp_emis.text = str(state.tp_emis)

    c_uf_el = child_by_local(ide, "cUF")
    c_uf = c_uf_el.text.strip() if c_uf_el is not None and c_uf_el.text else None
    dh_cont = _set_or_insert(
        ide,
        "dhCont",
        format_dh_cont(state.activated_at or datetime.now(), c_uf),
        before=child_by_local(ide, "xJust"),
    )
    _set_or_insert(ide, "xJust", clean_string(state.motive), after=dh_cont)

    nueva = chave_utils.replace_tp_emis(chave, state.tp_emis)
    inf_nfe.set("Id", prefix + nueva)
    c_dv = child_by_local(ide, "cDV")
    if c_dv is not None:
        c_dv.text = nueva[-1]

    logger.info(f"Documento corregido para contingencia {state.type.value}: chave {chave} -> {nueva}")
    return root
