"""
Utilidades para conversión de certificados PKCS#12 (P12/PFX) a PEM temporales

requests/zeep necesitan cert.pem + key.pem para mTLS. El P12/PFX sigue siendo
la fuente de verdad; los PEM son temporales y se crean con permisos 600.

Algunos certificados A1 usan algoritmos legacy (pbeWithSHA1And3-KeyTripleDES-CBC)
que cryptography no abre con OpenSSL 3.x. En ese caso se usa el binario
`openssl` con `-legacy`.
"""
import logging
import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Tuple

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

logger = logging.getLogger(__name__)

_PASS_ENV = "NFE_P12_PASS_TMP"


class PKCS12Error(Exception):
    """Excepción para errores en conversión PKCS#12"""
    pass


def _find_openssl_binary() -> Optional[str]:
    homebrew_openssl = "/opt/homebrew/bin/openssl"
    if os.path.exists(homebrew_openssl) and os.access(homebrew_openssl, os.X_OK):
        return homebrew_openssl
    return shutil.which("openssl")


def _run_openssl(args, password: str) -> None:
    openssl_bin = _find_openssl_binary()
    if not openssl_bin:
        raise PKCS12Error("OpenSSL no encontrado en el sistema")
    env = os.environ.copy()
    env[_PASS_ENV] = password or ""
    result = subprocess.run(
        [openssl_bin, "pkcs12", "-legacy", *args, "-passin", f"env:{_PASS_ENV}"],
        env=env,
        capture_output=True,
        text=True,
        timeout=30,
    )
    if result.returncode != 0:
        # nunca incluir la contraseña en el error
        output = result.stderr or result.stdout or "Sin salida"
        raise PKCS12Error(f"OpenSSL falló: {output[:500]}")


def _p12_to_pem_openssl_fallback(p12_path: str, p12_password: str, cert_pem_path: str, key_pem_path: str) -> None:
    _run_openssl(["-in", p12_path, "-clcerts", "-nokeys", "-out", cert_pem_path], p12_password)
    _run_openssl(["-in", p12_path, "-nocerts", "-nodes", "-out", key_pem_path], p12_password)

    if b"BEGIN CERTIFICATE" not in Path(cert_pem_path).read_bytes():
        raise PKCS12Error("El PEM generado no contiene 'BEGIN CERTIFICATE'")
    key_content = Path(key_pem_path).read_bytes()
    if b"BEGIN PRIVATE KEY" not in key_content and b"BEGIN RSA PRIVATE KEY" not in key_content:
        raise PKCS12Error("El PEM generado no contiene una clave privada")
    logger.info("Certificado P12 convertido a PEM usando OpenSSL (fallback legacy)")


def p12_to_temp_pem_files(p12_path: str, p12_password: str) -> Tuple[str, str]:
    """
    Convierte un certificado PKCS#12 a dos archivos PEM temporales.

    Returns:
        Tupla (cert_pem_path, key_pem_path)

    Raises:
        PKCS12Error: Si el archivo no existe, la contraseña es incorrecta,
                     o no se puede extraer cert/key
    """
    p12_file = Path(p12_path)
    if not p12_file.is_file():
        raise PKCS12Error(f"Archivo P12 no encontrado: {p12_path}")
    if p12_file.suffix.lower() not in (".p12", ".pfx"):
        logger.warning(f"Extensión inusual para certificado PKCS#12: {p12_file.suffix}")

    cert_fd, cert_path = tempfile.mkstemp(suffix=".pem", prefix="nfe_cert_")
    key_fd, key_path = tempfile.mkstemp(suffix=".pem", prefix="nfe_key_")
    os.close(cert_fd)
    os.close(key_fd)

    try:
        try:
            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                p12_file.read_bytes(),
                p12_password.encode("utf-8") if p12_password else None,
            )
        except ValueError as e:
            logger.debug(f"cryptography falló ({str(e)[:200]}); intentando OpenSSL -legacy")
            try:
                _p12_to_pem_openssl_fallback(str(p12_file), p12_password, cert_path, key_path)
            except PKCS12Error as openssl_error:
                raise PKCS12Error(
                    "Contraseña del certificado P12 incorrecta o archivo no soportado. "
                    f"OpenSSL: {str(openssl_error)[:200]}"
                ) from e
        else:
            if private_key is None:
                raise PKCS12Error("No se pudo extraer la clave privada del archivo P12")
            if certificate is None:
                raise PKCS12Error("No se pudo extraer el certificado del archivo P12")
            Path(cert_path).write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
            Path(key_path).write_bytes(
                private_key.private_bytes(
                    encoding=serialization.Encoding.PEM,
                    format=serialization.PrivateFormat.PKCS8,
                    encryption_algorithm=serialization.NoEncryption(),
                )
            )
        os.chmod(cert_path, 0o600)
        os.chmod(key_path, 0o600)
    except Exception:
        cleanup_pem_files(cert_path, key_path)
        raise

    logger.info(f"Certificado P12 convertido a PEM temporales: cert={Path(cert_path).name}, key={Path(key_path).name}")
    return (cert_path, key_path)


def cleanup_pem_files(cert_path: str, key_path: str) -> None:
    """Elimina los PEM creados por p12_to_temp_pem_files."""
    for path in (cert_path, key_path):
        if path and os.path.exists(path):
            try:
                os.unlink(path)
                logger.debug(f"Archivo PEM temporal eliminado: {Path(path).name}")
            except OSError as e:
                logger.warning(f"No se pudo eliminar archivo PEM temporal {Path(path).name}: {e}")


@contextmanager
def temp_pem_files(p12_path: str, p12_password: str) -> Iterator[Tuple[str, str]]:
    cert_path, key_path = p12_to_temp_pem_files(p12_path, p12_password)
    try:
        yield cert_path, key_path
    finally:
        cleanup_pem_files(cert_path, key_path)
