"""
Orquestador de transmisión NF-e / NFC-e

Flujo de sign_nfe():
1. Limpieza del XML crudo
2. Corrección para la contingencia vigente
3. Firma de infNFe
4. QR Code si el documento es modelo 65
5. Validación XSD (informativa, nunca corta el flujo)

transmit() agrega la resolución del endpoint y el envío SOAP, sin reintentos.
"""
import copy
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from lxml import etree

from .config import NFeConfig, ambiente_nombre, get_cuf, get_sigla
from .contingency import Contingency, ContingencySnapshot
from .corrector import correct_for_contingency
from .endpoint_resolver import EndpointResolver, ServiceDescriptor
from .exceptions import (
    NFeException,
    NFeInvalidArgumentError,
    NFeQRCodeError,
    NFeSchemaValidationError,
    NFeSigningError,
    NFeTransmissionError,
)
from .qr_generator import put_qr_tag
from .soap_client import SOAP_1_2, SOAP_NAMESPACES, SoapClient
from .webservices import CatalogLoader, ServiceCatalog
from .xml_signer import ALGORITHMS, CertificateBundle, XmlSigner
from .xml_utils import (
    NFE_NS,
    XmlInput,
    clear_xml_string,
    first_text_by_local,
    parse_xml,
    to_xml_string,
)
from .xsd_validator import schema_path_for, validate_xml_against_xsd

logger = logging.getLogger(__name__)

MODELO_NFE = 55
MODELO_NFCE = 65

# Payload del servicio a partir del XML firmado y el endpoint resuelto
PayloadBuilder = Callable[[str, ServiceDescriptor], str]


@dataclass(frozen=True)
class SignedDocument:
    xml: str
    schema_valid: bool
    schema_error: Optional[NFeSchemaValidationError]
    model: int


@dataclass(frozen=True)
class TransmissionResult:
    signed_xml: str
    raw_response: str
    endpoint: ServiceDescriptor
    schema_valid: bool
    schema_error: Optional[NFeSchemaValidationError]


def build_envi_nfe(signed_xml: str, versao: str, id_lote: Optional[str] = None, ind_sinc: int = 0) -> str:
    """Envuelve la NF-e firmada en <enviNFe> (lote de un documento)"""
    if ind_sinc not in (0, 1):
        raise NFeInvalidArgumentError(f"indSinc inválido: {ind_sinc!r}")
    id_lote = id_lote or str(int(time.time() * 1000))[-15:]
    envi = etree.Element(f"{{{NFE_NS}}}enviNFe", nsmap={None: NFE_NS})
    envi.set("versao", versao)
    etree.SubElement(envi, f"{{{NFE_NS}}}idLote").text = id_lote
    etree.SubElement(envi, f"{{{NFE_NS}}}indSinc").text = str(ind_sinc)
    envi.append(parse_xml(clear_xml_string(signed_xml, remove_declaration=True)))
    return to_xml_string(envi, xml_declaration=False)


class NFeTools:
    """
    Firma, corrige y transmite documentos NF-e / NFC-e

    La contingencia (`contingency`) se comparte entre todas las transmisiones
    de esta instancia; cada llamada puede recibir además un snapshot explícito.
    """

    def __init__(
        self,
        config: NFeConfig,
        certificate: CertificateBundle,
        soap=None,
        catalog_loader: Optional[CatalogLoader] = None,
        contingency: Optional[Contingency] = None,
    ):
        self.config = config
        self.certificate = certificate
        self.contingency = contingency or Contingency()
        self.soap_namespaces = dict(SOAP_NAMESPACES)
        self._catalog_loader = catalog_loader
        self._algorithm = "sha1"
        self._model = MODELO_NFE
        self._model_lock = threading.RLock()
        self.version(config.versao)
        self.environment(config.tp_amb)
        self.soap = soap if soap is not None else SoapClient(config)

    # ------------------------------------------------------------------
    # Parámetros
    # ------------------------------------------------------------------
    def model(self, model: Optional[int] = None) -> int:
        """Devuelve el modelo vigente; si se informa 55 o 65 lo cambia"""
        with self._model_lock:
            if model is not None:
                if int(model) not in (MODELO_NFE, MODELO_NFCE):
                    raise NFeInvalidArgumentError(f"Modelo inválido: {model!r}. Debe ser 55 o 65")
                self._model = int(model)
            return self._model

    def version(self, version: Optional[str] = None) -> str:
        if version:
            self._versao = version
            self.catalog = ServiceCatalog(version, self._catalog_loader)
            self.resolver = EndpointResolver(self.catalog)
        return self._versao

    def environment(self, tp_amb=2) -> str:
        self.ambiente = ambiente_nombre(tp_amb)
        self.tp_amb = 1 if self.ambiente == "producao" else 2
        return self.ambiente

    def set_sign_algorithm(self, algorithm: str = "sha1") -> None:
        key = (algorithm or "").strip().lower()
        if key not in ALGORITHMS:
            raise NFeInvalidArgumentError(f"Algoritmo de firma no soportado: {algorithm!r}")
        self._algorithm = key

    def load_soap_class(self, soap) -> None:
        """Reemplaza el transporte (cualquier objeto con send(...))"""
        if not callable(getattr(soap, "send", None)):
            raise NFeInvalidArgumentError("El transporte debe implementar send()")
        self.soap = soap

    def get_cuf(self, acronym: str) -> int:
        return get_cuf(acronym)

    def get_acronym(self, cuf) -> str:
        return get_sigla(cuf)

    # ------------------------------------------------------------------
    # Firma
    # ------------------------------------------------------------------
    def sign_nfe(self, xml: XmlInput, state: Optional[ContingencySnapshot] = None) -> SignedDocument:
        """
        Firma la NF-e aplicando la contingencia vigente

        Raises:
            NFeSigningError: Falla de corrección o de firma (con la causa original)
            NFeQRCodeError: Falla en el QR Code de la NFC-e
        """
        state = state or self.contingency.current()
        try:
            if isinstance(xml, bytes):
                xml = xml.decode("utf-8")
            if isinstance(xml, str):
                xml = clear_xml_string(xml)
            root = copy.deepcopy(xml) if isinstance(xml, etree._Element) else parse_xml(xml)
            correct_for_contingency(root, state)
            signed = XmlSigner(self.certificate, self._algorithm).sign(root)
        except NFeSigningError:
            raise
        except (NFeException, etree.XMLSyntaxError, ValueError) as e:
            raise NFeSigningError(f"Error al preparar la NF-e para firma: {e}") from e

        signed_root = parse_xml(signed)
        mod = first_text_by_local(signed_root, "mod")
        model = int(mod) if mod.isdigit() else self.model()
        if model == MODELO_NFCE:
            signed = to_xml_string(self._add_qr_code(signed_root))

        schema_path = schema_path_for(self.config.schemes_path, self._versao, "nfe")
        ok, errors = validate_xml_against_xsd(signed, schema_path)
        schema_error = None
        if not ok:
            schema_error = NFeSchemaValidationError(
                f"NF-e no valida contra {schema_path.name}: {errors[0] if errors else 'sin detalle'}",
                errors=errors,
                schema_path=str(schema_path),
            )
            logger.warning(f"Validación XSD falló ({len(errors)} errores); se continúa")

        return SignedDocument(xml=signed, schema_valid=ok, schema_error=schema_error, model=model)

    def _add_qr_code(self, signed_root: etree._Element) -> etree._Element:
        """
        Resuelve NfeConsultaQR como modelo 65 y agrega infNFeSupl

        La URL se busca ignorando la contingencia: la consulta pública es la
        de la UF aunque la autorización vaya a SVC/EPEC, y en FSDA/OFFLINE
        la NFC-e igual necesita su QR Code.
        """
        try:
            uf = get_sigla(first_text_by_local(signed_root, "cUF"))
            tp_amb = first_text_by_local(signed_root, "tpAmb")
            with self._model_lock:
                previous = self._model
                self._model = MODELO_NFCE
                try:
                    endpoint = self.resolver.resolve(
                        "NfeConsultaQR", uf, tp_amb, self.model(), ignore_contingency=True
                    )
                finally:
                    self._model = previous
        except (NFeTransmissionError, NFeInvalidArgumentError) as e:
            raise NFeQRCodeError(f"No se pudo resolver la URL del QR Code: {e}") from e

        return put_qr_tag(
            signed_root,
            self.config.csc,
            self.config.csc_id,
            uf,
            self._versao,
            endpoint.url,
            endpoint.url_chave,
        )

    # ------------------------------------------------------------------
    # Transmisión
    # ------------------------------------------------------------------
    def resolve(
        self,
        service: str,
        state: Optional[ContingencySnapshot] = None,
        model: Optional[int] = None,
    ) -> ServiceDescriptor:
        """Resuelve `service` para la UF de la configuración; `model` default: el vigente"""
        state = state or self.contingency.current()
        model = model if model is not None else self.model()
        return self.resolver.resolve(service, self.config.sigla_uf, self.tp_amb, model, state)

    def transmit(
        self,
        xml: XmlInput,
        service: str = "NfeAutorizacao",
        state: Optional[ContingencySnapshot] = None,
        *,
        payload_builder: Optional[PayloadBuilder] = None,
        id_lote: Optional[str] = None,
        ind_sinc: int = 0,
    ) -> TransmissionResult:
        """
        Firma, resuelve el endpoint y envía

        Args:
            xml: NF-e sin firmar (o firmada, se vuelve a firmar)
            service: Servicio del catálogo
            state: Snapshot de contingencia; default: la declarada en la instancia
            payload_builder: Construye el mensaje del servicio; default enviNFe
                para NfeAutorizacao y el XML firmado para el resto
            id_lote, ind_sinc: Parámetros de enviNFe

        Raises:
            NFeSigningError / NFeQRCodeError: Antes de resolver el endpoint
            NFeTransmissionError: Resolución o envío (sin reintentos)
        """
        state = state or self.contingency.current()
        signed = self.sign_nfe(xml, state)
        # el endpoint sigue el modelo del documento, no el de la instancia
        endpoint = self.resolve(service, state, signed.model)

        try:
            if payload_builder is not None:
                payload = payload_builder(signed.xml, endpoint)
            elif service == "NfeAutorizacao":
                payload = build_envi_nfe(signed.xml, self._versao, id_lote, ind_sinc)
            else:
                payload = clear_xml_string(signed.xml, remove_declaration=True)

            raw = self.soap.send(
                endpoint.url,
                endpoint.method,
                endpoint.soap_action,
                SOAP_1_2,
                self.soap_namespaces,
                payload,
                endpoint.header,
            )
        except NFeTransmissionError:
            raise
        except Exception as e:
            raise NFeTransmissionError(f"Error al enviar {service} a {endpoint.url}: {e}") from e

        logger.info(f"{service} enviado a {endpoint.url} (tpEmis={state.tp_emis})")
        return TransmissionResult(
            signed_xml=signed.xml,
            raw_response=raw,
            endpoint=endpoint,
            schema_valid=signed.schema_valid,
            schema_error=signed.schema_error,
        )
