import json
import logging
import os
import sys
import threading
from dataclasses import asdict
from pathlib import Path

from flask import Flask, jsonify, request
from lxml import etree

# Asegurar imports desde repo root (evitar conflicto con webui/app.py)
SCRIPT_DIR = Path(__file__).resolve().parent
if str(SCRIPT_DIR) in sys.path:
    sys.path.remove(str(SCRIPT_DIR))
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from app.nfe_client.config import get_nfe_config
from app.nfe_client.contingency import Contingency
from app.nfe_client.endpoint_resolver import EndpointResolver
from app.nfe_client.exceptions import (
    NFeCatalogUnavailableError,
    NFeContingencyUnavailableError,
    NFeException,
    NFeInvalidArgumentError,
    NFeMalformedDocumentError,
    NFeQRCodeError,
    NFeServiceNotFoundError,
    NFeSigningError,
    NFeTransportError,
)
from app.nfe_client.response_parser import parse_sefaz_response
from app.nfe_client.tools import NFeTools
from app.nfe_client.webservices import ServiceCatalog
from app.nfe_client.xml_signer import load_certificate_bundle

logger = logging.getLogger(__name__)

APP_TITLE = "NF-e minisender"
CONTINGENCY_FILE = os.environ.get("NFE_CONTINGENCY_FILE")

app = Flask(__name__)

_tools_lock = threading.Lock()

# Orden importa: subclases antes que sus bases
ERROR_STATUS = (
    (NFeInvalidArgumentError, 400),
    (NFeServiceNotFoundError, 404),
    (NFeContingencyUnavailableError, 409),
    (NFeMalformedDocumentError, 422),
    (NFeSigningError, 422),
    (NFeQRCodeError, 422),
    (NFeTransportError, 502),
    (NFeCatalogUnavailableError, 503),
)


def _load_contingency() -> Contingency:
    if CONTINGENCY_FILE and Path(CONTINGENCY_FILE).exists():
        return Contingency.from_json(Path(CONTINGENCY_FILE).read_text(encoding="utf-8"))
    return Contingency()


def _persist_contingency() -> None:
    if CONTINGENCY_FILE:
        Path(CONTINGENCY_FILE).write_text(get_contingency().to_json(), encoding="utf-8")


def get_contingency() -> Contingency:
    holder = app.config.get("NFE_CONTINGENCY")
    if holder is None:
        holder = _load_contingency()
        app.config["NFE_CONTINGENCY"] = holder
    return holder


def get_tools() -> NFeTools:
    """NFeTools del proceso; comparte la contingencia declarada vía /api/contingency"""
    with _tools_lock:
        tools = app.config.get("NFE_TOOLS")
        if tools is None:
            cfg = get_nfe_config()
            if not cfg.cert_path:
                raise NFeInvalidArgumentError("Falta NFE_CERT_PATH (certificado A1 .pfx/.p12)")
            bundle = load_certificate_bundle(cfg.cert_path, cfg.cert_password)
            tools = NFeTools(cfg, bundle, contingency=get_contingency())
            app.config["NFE_TOOLS"] = tools
        return tools


def _error_response(exc: NFeException):
    status = 500
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            status = code
            break
    body = {"ok": False, "error": str(exc), "error_type": type(exc).__name__}
    http_status = getattr(exc, "http_status", None)
    if http_status is not None:
        body["http_status"] = http_status
    return jsonify(body), status


def _contingency_body(holder: Contingency) -> dict:
    data = json.loads(holder.to_json())
    data["active"] = holder.current().active
    return data


@app.route("/health")
@app.route("/healthz")
def health():
    return jsonify({"ok": True, "service": APP_TITLE})


@app.route("/api/contingency", methods=["GET"])
def contingency_show():
    return jsonify(_contingency_body(get_contingency()))


@app.route("/api/contingency", methods=["POST"])
def contingency_activate():
    payload = request.get_json(silent=True) or {}
    holder = get_contingency()
    try:
        holder.activate(
            payload.get("type") or None,
            payload.get("motive") or "",
            uf=payload.get("uf") or None,
        )
    except NFeException as exc:
        return _error_response(exc)
    _persist_contingency()
    return jsonify(_contingency_body(holder))


@app.route("/api/contingency", methods=["DELETE"])
def contingency_clear():
    holder = get_contingency()
    holder.clear()
    _persist_contingency()
    return jsonify(_contingency_body(holder))


@app.route("/api/resolve", methods=["POST"])
def resolve_endpoint():
    payload = request.get_json(silent=True) or {}
    service = (payload.get("service") or "NfeAutorizacao").strip()
    uf = (payload.get("uf") or "").strip()
    if not uf:
        return jsonify({"ok": False, "error": "uf es obligatorio"}), 400
    try:
        resolver = EndpointResolver(ServiceCatalog(str(payload.get("version") or "4.00")))
        descriptor = resolver.resolve(
            service,
            uf,
            payload.get("environment") or "homologacao",
            int(payload.get("model") or 55),
            get_contingency().current(),
            ignore_contingency=bool(payload.get("ignore_contingency")),
        )
    except NFeException as exc:
        return _error_response(exc)
    except ValueError:
        return jsonify({"ok": False, "error": f"model inválido: {payload.get('model')!r}"}), 400
    return jsonify({"ok": True, "endpoint": asdict(descriptor)})


@app.route("/api/transmit", methods=["POST"])
def transmit():
    payload = request.get_json(silent=True) or {}
    xml = payload.get("xml") or ""
    if not xml.strip():
        return jsonify({"ok": False, "error": "xml es obligatorio"}), 400
    service = (payload.get("service") or "NfeAutorizacao").strip()
    try:
        tools = get_tools()
        if payload.get("model"):
            tools.model(int(payload["model"]))
        result = tools.transmit(xml, service)
    except NFeException as exc:
        return _error_response(exc)
    except (TypeError, ValueError):
        return jsonify({"ok": False, "error": f"model inválido: {payload.get('model')!r}"}), 400

    body = {
        "ok": True,
        "endpoint": asdict(result.endpoint),
        "schema_valid": result.schema_valid,
        "schema_errors": result.schema_error.errors if result.schema_error else [],
        "signed_xml": result.signed_xml,
        "raw_response": result.raw_response,
    }
    try:
        body["response"] = parse_sefaz_response(result.raw_response)
    except etree.XMLSyntaxError as exc:
        logger.warning(f"Respuesta SEFAZ no parseable: {exc}")
        body["response"] = None
    return jsonify(body)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    try:
        app.run(host="127.0.0.1", port=5055, debug=False, use_reloader=False)
    except Exception as exc:
        print(f"APP_RUN_ERROR: {exc!r}", file=sys.stderr)
        raise
