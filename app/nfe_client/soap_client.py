"""
Cliente SOAP para los webservices SEFAZ (NF-e / NFC-e)

Requisitos:
- SOAP 1.2 (1.1 disponible para servicios legados)
- Estilo Document/Literal: el mensaje va dentro de <nfeDadosMsg>
- <nfeCabecMsg> en el Header solo para layouts anteriores a 4.00
- mTLS con el certificado A1 del emisor (PKCS#12 convertido a PEM temporales)
- Sin reintentos: un fallo de red o HTTP se informa al llamador
"""
import logging
from typing import Any, Dict, Optional

import requests
from lxml import etree
from requests import Session
from requests.adapters import HTTPAdapter
from zeep.transports import Transport

from .config import NFeConfig
from .exceptions import NFeTransportError
from .pkcs12_utils import PKCS12Error, cleanup_pem_files, p12_to_temp_pem_files
from .xml_utils import XmlInput, clear_xml_string, parse_xml

logger = logging.getLogger(__name__)

SOAP_1_1 = "1.1"
SOAP_1_2 = "1.2"

SOAP_ENVELOPE_NS = {
    SOAP_1_1: "http://schemas.xmlsoap.org/soap/envelope/",
    SOAP_1_2: "http://www.w3.org/2003/05/soap-envelope",
}

# Namespaces declarados en la raíz del Envelope (el prefijo "soap" se completa según versión)
SOAP_NAMESPACES = {
    "xsi": "http://www.w3.org/2001/XMLSchema-instance",
    "xsd": "http://www.w3.org/2001/XMLSchema",
}


def _soap_headers(version: str, action: str) -> Dict[str, str]:
    if version == SOAP_1_2:
        return {
            "Content-Type": f'application/soap+xml; charset=utf-8; action="{action}"',
            "Accept": "application/soap+xml, text/xml, */*",
        }
    if version == SOAP_1_1:
        return {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f'"{action}"',
            "Accept": "text/xml, */*",
        }
    raise ValueError(f"Versión SOAP no soportada: {version}")


def build_soap_envelope(
    namespace: str,
    payload: XmlInput,
    header: Optional[Dict[str, Any]] = None,
    soap_version: str = SOAP_1_2,
    namespaces: Optional[Dict[str, str]] = None,
) -> bytes:
    """
    Construye el envelope SOAP

    Args:
        namespace: Namespace del servicio (…/wsdl/<operation>)
        payload: Mensaje del servicio (ej: <enviNFe> o <consStatServ>)
        header: {cUF, versaoDados} para <nfeCabecMsg>, o None
        soap_version: "1.2" o "1.1"
        namespaces: Namespaces extra para la raíz del Envelope

    Returns:
        Bytes del envelope completo, con declaración XML
    """
    if soap_version not in SOAP_ENVELOPE_NS:
        raise ValueError(f"Versión SOAP no soportada: {soap_version}")
    envelope_ns = SOAP_ENVELOPE_NS[soap_version]
    nsmap = {**SOAP_NAMESPACES, **(namespaces or {}), "soap": envelope_ns}

    envelope = etree.Element(f"{{{envelope_ns}}}Envelope", nsmap=nsmap)
    if header:
        soap_header = etree.SubElement(envelope, f"{{{envelope_ns}}}Header")
        cabec = etree.SubElement(soap_header, f"{{{namespace}}}nfeCabecMsg", nsmap={None: namespace})
        for key, value in header.items():
            etree.SubElement(cabec, f"{{{namespace}}}{key}").text = str(value)

    body = etree.SubElement(envelope, f"{{{envelope_ns}}}Body")
    dados = etree.SubElement(body, f"{{{namespace}}}nfeDadosMsg", nsmap={None: namespace})
    if isinstance(payload, etree._Element):
        dados.append(payload)
    else:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        dados.append(parse_xml(clear_xml_string(text, remove_declaration=True)))

    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")


class SoapClient:
    """
    Transporte SOAP sobre zeep.transports.Transport (requests.Session con mTLS)

    El transporte se crea en el primer envío; close() elimina los PEM temporales.
    """

    def __init__(self, config: NFeConfig, transport: Optional[Transport] = None):
        self.config = config
        self.transport = transport
        self._temp_pem_files = None

    def _create_transport(self) -> Transport:
        session = Session()
        if self.config.cert_path:
            try:
                cert_pem_path, key_pem_path = p12_to_temp_pem_files(
                    self.config.cert_path, self.config.cert_password or ""
                )
            except PKCS12Error as e:
                raise NFeTransportError(f"Error al convertir certificado P12 a PEM: {e}") from e
            self._temp_pem_files = (cert_pem_path, key_pem_path)
            session.cert = (cert_pem_path, key_pem_path)
        else:
            logger.warning("Sin certificado configurado: la SEFAZ rechazará la conexión mTLS")

        session.verify = self.config.ca_bundle_path or True
        session.mount("https://", HTTPAdapter())
        timeout = self.config.request_timeout
        return Transport(session=session, timeout=timeout, operation_timeout=timeout)

    def send(
        self,
        url: str,
        method: str,
        action: str,
        soap_version: str = SOAP_1_2,
        namespaces: Optional[Dict[str, str]] = None,
        payload: XmlInput = "",
        header: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Envía el mensaje y devuelve la respuesta cruda

        Raises:
            NFeTransportError: Error de conexión o respuesta HTTP distinta de 200
        """
        namespace = action.rsplit("/", 1)[0] if "/" in action else action
        soap_bytes = build_soap_envelope(namespace, payload, header, soap_version, namespaces)
        headers = _soap_headers(soap_version, action)

        if self.transport is None:
            self.transport = self._create_transport()

        logger.debug(f"POST {url} ({method}, SOAP {soap_version}, {len(soap_bytes)} bytes)")
        try:
            resp = self.transport.post(url, soap_bytes, headers)
        except requests.exceptions.RequestException as e:
            raise NFeTransportError(f"Error de conexión con {url}: {e}") from e

        if resp.status_code != 200:
            raise NFeTransportError(
                f"HTTP {resp.status_code} desde {url}: {resp.text[:300]}",
                http_status=resp.status_code,
            )
        logger.info(f"{method} respondió HTTP 200 ({len(resp.content)} bytes)")
        return resp.content.decode(resp.encoding or "utf-8", errors="replace")

    def close(self) -> None:
        if self._temp_pem_files:
            cleanup_pem_files(*self._temp_pem_files)
            self._temp_pem_files = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
