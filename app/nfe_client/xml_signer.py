"""
Módulo para firma digital XML según el layout NF-e

Requisitos:
- XML Digital Signature Enveloped, referenciando el Id de infNFe
- Certificado X.509 v3 (A1, PKCS#12)
- Canonicalización C14N 1.0
- RSA-SHA1 (layout 3.10/4.00) o RSA-SHA256
- <Signature> con namespace default, hermano siguiente de infNFe
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from lxml import etree
from signxml import CanonicalizationMethod, DigestAlgorithm, SignatureMethod, XMLSigner, methods

from .exceptions import NFeSigningError
from .xml_utils import DS_NS, XmlInput, find_first_by_local, parse_xml, to_xml_string

logger = logging.getLogger(__name__)

ALGORITHMS = {
    "sha1": (SignatureMethod.RSA_SHA1, DigestAlgorithm.SHA1),
    "sha256": (SignatureMethod.RSA_SHA256, DigestAlgorithm.SHA256),
}


@dataclass(frozen=True)
class CertificateBundle:
    """Contenido de un PKCS#12 listo para firmar"""

    private_key: object
    certificate: x509.Certificate
    additional_certificates: List[x509.Certificate] = field(default_factory=list)

    @property
    def cert_pem(self) -> str:
        return self.certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")

    @property
    def not_valid_after(self) -> datetime:
        return self.certificate.not_valid_after_utc


def load_certificate_bundle(
    cert_path: Union[str, Path],
    cert_password: Optional[str],
    check_validity: bool = True,
) -> CertificateBundle:
    """
    Carga el certificado y la clave privada desde un archivo PFX/P12

    Raises:
        NFeSigningError: Si el archivo no existe, la contraseña es incorrecta
            o el certificado no es utilizable
    """
    cert_file = Path(cert_path)
    if not cert_file.is_file():
        raise NFeSigningError(f"Certificado no encontrado: {cert_path}")

    try:
        private_key, certificate, additional = pkcs12.load_key_and_certificates(
            cert_file.read_bytes(),
            cert_password.encode("utf-8") if cert_password else None,
        )
    except ValueError as e:
        raise NFeSigningError(f"Error al cargar certificado PKCS#12: {e}") from e

    if private_key is None:
        raise NFeSigningError("No se pudo extraer la clave privada del certificado")
    if certificate is None:
        raise NFeSigningError("No se pudo extraer el certificado del archivo")

    bundle = CertificateBundle(private_key, certificate, list(additional or []))
    if check_validity:
        validate_certificate(bundle)
    return bundle


def validate_certificate(bundle: CertificateBundle) -> None:
    """
    Valida el certificado:
    - Fecha de validez
    - Clave RSA de al menos 2048 bits
    """
    now = datetime.now(timezone.utc)
    cert = bundle.certificate
    if cert.not_valid_after_utc < now:
        raise NFeSigningError(f"Certificado expirado. Válido hasta: {cert.not_valid_after_utc}")
    if cert.not_valid_before_utc > now:
        raise NFeSigningError(f"Certificado aún no válido. Válido desde: {cert.not_valid_before_utc}")
    if not isinstance(bundle.private_key, rsa.RSAPrivateKey):
        raise NFeSigningError("La clave privada debe ser RSA")
    if bundle.private_key.key_size < 2048:
        raise NFeSigningError(
            f"La clave RSA debe ser de al menos 2048 bits. Actual: {bundle.private_key.key_size} bits"
        )
    logger.info(f"Certificado válido. Emisor: {cert.issuer.rfc4514_string()}, Válido hasta: {cert.not_valid_after_utc}")


class _NFeXMLSigner(XMLSigner):
    """XMLSigner que acepta SHA1, exigido por el layout NF-e"""

    def check_deprecated_methods(self):
        pass


def remove_signature(root: etree._Element) -> etree._Element:
    """
    Remueve todos los <Signature> XMLDSig del documento.

    Idempotente: si el documento no está firmado no hace nada.
    """
    for sig in root.xpath(".//ds:Signature", namespaces={"ds": DS_NS}):
        parent = sig.getparent()
        if parent is not None:
            parent.remove(sig)
    return root


class XmlSigner:
    """
    Firma XML NF-e con signxml:
    - Enveloped, Reference URI="#<Id>"
    - C14N 1.0
    - X509Data en KeyInfo (sin KeyValue)
    """

    def __init__(self, certificate: CertificateBundle, algorithm: str = "sha1"):
        self.certificate = certificate
        self.set_algorithm(algorithm)

    def set_algorithm(self, algorithm: str) -> None:
        key = (algorithm or "").strip().lower()
        if key not in ALGORITHMS:
            raise NFeSigningError(f"Algoritmo de firma no soportado: {algorithm!r}. Válidos: {sorted(ALGORITHMS)}")
        self.algorithm = key

    def sign(self, xml: XmlInput, root_element: str = "infNFe", id_attribute: str = "Id") -> str:
        """
        Firma el elemento `root_element` del XML

        Args:
            xml: XML a firmar
            root_element: Nombre local del elemento firmado
            id_attribute: Atributo con el identificador referenciado

        Returns:
            XML firmado como string (con declaración XML)
        """
        try:
            root = parse_xml(xml)
        except etree.XMLSyntaxError as e:
            raise NFeSigningError(f"XML inválido para firmar: {e}") from e

        target = find_first_by_local(root, root_element)
        if target is None:
            raise NFeSigningError(f"No se encontró <{root_element}> para firmar")
        ref_id = (target.get(id_attribute) or "").strip()
        if not ref_id:
            raise NFeSigningError(f"<{root_element}> no tiene atributo {id_attribute}")

        remove_signature(root)

        sign_alg, digest_alg = ALGORITHMS[self.algorithm]
        signer = _NFeXMLSigner(
            method=methods.enveloped,
            signature_algorithm=sign_alg,
            digest_algorithm=digest_alg,
            c14n_algorithm=CanonicalizationMethod.CANONICAL_XML_1_0,
        )
        signer.namespaces = {None: DS_NS}

        try:
            signed_root = signer.sign(
                root,
                key=self.certificate.private_key,
                cert=self.certificate.cert_pem,
                reference_uri=f"#{ref_id}",
                id_attribute=id_attribute,
            )
        except Exception as e:
            raise NFeSigningError(f"Error al firmar XML: {e}") from e

        # La firma queda como hija de la raíz; el layout la exige junto a infNFe
        signed_target = signed_root.xpath(f"//*[@{id_attribute}=$ref]", ref=ref_id)[0]
        signature = signed_root.find(f".//{{{DS_NS}}}Signature")
        if signature is not None and signature.getparent() is not signed_target.getparent():
            signed_target.addnext(signature)

        logger.info(f"XML firmado exitosamente ({root_element} Id={ref_id}, {self.algorithm})")
        return to_xml_string(signed_root)
