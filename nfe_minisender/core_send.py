from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from lxml import etree

from app.nfe_client.config import get_nfe_config
from app.nfe_client.contingency import Contingency
from app.nfe_client.exceptions import NFeException, NFeInvalidArgumentError
from app.nfe_client.response_parser import parse_sefaz_response
from app.nfe_client.tools import NFeTools
from app.nfe_client.xml_signer import load_certificate_bundle

logger = logging.getLogger(__name__)


def _abs_path(p: Path) -> str:
    try:
        return str(p.resolve())
    except OSError:
        return str(p)


def load_contingency(path: Optional[Path]) -> Contingency:
    """Contingencia persistida por el llamador; sin archivo no hay contingencia"""
    if path is None:
        return Contingency()
    p = Path(path).expanduser()
    if not p.exists():
        return Contingency()
    return Contingency.from_json(p.read_text(encoding="utf-8"))


def save_contingency(holder: Contingency, path: Path) -> str:
    p = Path(path).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(holder.to_json(), encoding="utf-8")
    return _abs_path(p)


def build_tools(
    *,
    config_path: Optional[str] = None,
    contingency_file: Optional[Path] = None,
    soap=None,
) -> NFeTools:
    cfg = get_nfe_config(config_path)
    if not cfg.cert_path:
        raise NFeInvalidArgumentError("Falta NFE_CERT_PATH (certificado A1 .pfx/.p12)")
    bundle = load_certificate_bundle(cfg.cert_path, cfg.cert_password)
    return NFeTools(cfg, bundle, soap=soap, contingency=load_contingency(contingency_file))


def _read_xml(xml_path: Path) -> Path:
    xml_file = Path(xml_path).expanduser()
    if not xml_file.is_absolute():
        xml_file = Path.cwd() / xml_file
    xml_file = xml_file.resolve()
    if not xml_file.exists() or not xml_file.is_file():
        raise FileNotFoundError(f"XML no existe o no es archivo: {xml_file}")
    return xml_file


def _default_out(xml_file: Path) -> Path:
    return xml_file.with_name(f"{xml_file.stem}_signed.xml")


def _error_result(exc: Exception, xml_path: Path, extra: Optional[dict] = None) -> dict:
    result = {
        "ok": False,
        "success": False,
        "signed_xml_path": None,
        "schema_valid": None,
        "schema_errors": [],
        "meta": {
            "xml_path": str(xml_path),
            "error": str(exc),
            "error_type": type(exc).__name__,
        },
    }
    result.update(extra or {})
    return result


def sign_from_xml(
    *,
    xml_path: Path,
    config_path: Optional[str] = None,
    contingency_file: Optional[Path] = None,
    out_path: Optional[Path] = None,
    model: Optional[int] = None,
    tools: Optional[NFeTools] = None,
) -> dict:
    """
    Core importable: firma una NF-e desde archivo y guarda el XML firmado.

    Nunca lanza para errores esperados (XML inexistente, config, firma, QR);
    se informan en `ok`/`meta.error_type`.
    """
    try:
        xml_file = _read_xml(xml_path)
        tools = tools or build_tools(config_path=config_path, contingency_file=contingency_file)
        if model is not None:
            tools.model(model)
        signed = tools.sign_nfe(xml_file.read_text(encoding="utf-8"))
    except (NFeException, FileNotFoundError) as exc:
        logger.warning(f"Firma fallida: {exc}")
        return _error_result(exc, Path(xml_path))

    out = Path(out_path) if out_path else _default_out(xml_file)
    out.write_text(signed.xml, encoding="utf-8")
    return {
        "ok": True,
        "success": True,
        "signed_xml_path": _abs_path(out),
        "model": signed.model,
        "schema_valid": signed.schema_valid,
        "schema_errors": signed.schema_error.errors if signed.schema_error else [],
        "meta": {
            "xml_path": _abs_path(xml_file),
            "tpEmis": tools.contingency.current().tp_emis,
            "error": None,
            "error_type": None,
        },
    }


def send_from_xml(
    *,
    xml_path: Path,
    service: str = "NfeAutorizacao",
    config_path: Optional[str] = None,
    contingency_file: Optional[Path] = None,
    out_path: Optional[Path] = None,
    model: Optional[int] = None,
    tools: Optional[NFeTools] = None,
) -> dict:
    """
    Core importable: firma, resuelve el endpoint y envía a la SEFAZ.

    Devuelve cStat/xMotivo de la respuesta y el endpoint aplicado.
    """
    empty = {"cStat": None, "xMotivo": None, "nRec": None, "protNFe": [], "endpoint": None}
    try:
        xml_file = _read_xml(xml_path)
        tools = tools or build_tools(config_path=config_path, contingency_file=contingency_file)
        if model is not None:
            tools.model(model)
        result = tools.transmit(xml_file.read_text(encoding="utf-8"), service)
    except (NFeException, FileNotFoundError) as exc:
        logger.warning(f"Envío {service} fallido: {exc}")
        return _error_result(exc, Path(xml_path), empty)

    out = Path(out_path) if out_path else _default_out(xml_file)
    out.write_text(result.signed_xml, encoding="utf-8")

    endpoint = result.endpoint
    meta = {
        "xml_path": _abs_path(xml_file),
        "service": service,
        "error": None,
        "error_type": None,
    }
    try:
        parsed = parse_sefaz_response(result.raw_response)
    except etree.XMLSyntaxError as exc:
        parsed = {"cStat": None, "xMotivo": None, "nRec": None, "protNFe": []}
        meta["error"] = f"Respuesta no es XML: {exc}"
        meta["error_type"] = "XMLSyntaxError"

    ok = parsed.get("cStat") is not None
    return {
        "ok": ok,
        "success": ok,
        "cStat": parsed.get("cStat"),
        "xMotivo": parsed.get("xMotivo"),
        "nRec": parsed.get("nRec"),
        "protNFe": parsed.get("protNFe") or [],
        "endpoint": {
            "url": endpoint.url,
            "method": endpoint.method,
            "soap_action": endpoint.soap_action,
            "sigla": endpoint.sigla,
            "environment": endpoint.environment,
            "model": endpoint.model,
            "version": endpoint.version,
        },
        "signed_xml_path": _abs_path(out),
        "schema_valid": result.schema_valid,
        "schema_errors": result.schema_error.errors if result.schema_error else [],
        "meta": meta,
    }
