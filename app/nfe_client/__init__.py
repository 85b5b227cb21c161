"""
Módulo cliente para transmisión de NF-e / NFC-e a los webservices SEFAZ
Brasil - modelos 55 y 65, layouts 3.10 y 4.00
"""
from .config import NFeConfig, get_nfe_config
from .contingency import Contingency, ContingencySnapshot, ContingencyType
from .corrector import correct_for_contingency
from .endpoint_resolver import EndpointResolver, ServiceDescriptor
from .webservices import CatalogLoader, ServiceCatalog
from .xml_signer import CertificateBundle, XmlSigner, load_certificate_bundle, remove_signature
from .qr_generator import put_qr_tag
from .soap_client import SoapClient
from .tools import NFeTools, SignedDocument, TransmissionResult
from .pkcs12_utils import p12_to_temp_pem_files, cleanup_pem_files, PKCS12Error
from .exceptions import (
    NFeException,
    NFeInvalidArgumentError,
    NFeMalformedDocumentError,
    NFeSigningError,
    NFeQRCodeError,
    NFeSchemaValidationError,
    NFeTransmissionError,
    NFeServiceNotFoundError,
    NFeCatalogUnavailableError,
    NFeContingencyUnavailableError,
    NFeTransportError,
)

__all__ = [
    'NFeConfig',
    'get_nfe_config',
    'Contingency',
    'ContingencySnapshot',
    'ContingencyType',
    'correct_for_contingency',
    'EndpointResolver',
    'ServiceDescriptor',
    'CatalogLoader',
    'ServiceCatalog',
    'CertificateBundle',
    'XmlSigner',
    'load_certificate_bundle',
    'remove_signature',
    'put_qr_tag',
    'SoapClient',
    'NFeTools',
    'SignedDocument',
    'TransmissionResult',
    'p12_to_temp_pem_files',
    'cleanup_pem_files',
    'PKCS12Error',
    'NFeException',
    'NFeInvalidArgumentError',
    'NFeMalformedDocumentError',
    'NFeSigningError',
    'NFeQRCodeError',
    'NFeSchemaValidationError',
    'NFeTransmissionError',
    'NFeServiceNotFoundError',
    'NFeCatalogUnavailableError',
    'NFeContingencyUnavailableError',
    'NFeTransportError',
]
