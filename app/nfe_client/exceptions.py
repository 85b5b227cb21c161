"""
Excepciones personalizadas para el cliente NF-e
"""
from typing import Optional


class NFeException(Exception):
    """Excepción base para errores NF-e"""
    def __init__(self, message: str, code: Optional[str] = None):
        self.message = message
        self.code = code
        super().__init__(self.message)


class NFeInvalidArgumentError(NFeException, ValueError):
    """Argumento inválido provisto por el llamador (ej: motivo de contingencia vacío)"""
    pass


class NFeMalformedDocumentError(NFeException):
    """El documento no tiene la estructura esperada (infNFe, ide, Id...)"""
    pass


class NFeSigningError(NFeException):
    """Error al corregir o firmar el documento"""
    pass


class NFeQRCodeError(NFeException):
    """Error en la generación del QR Code de la NFC-e"""
    pass


class NFeSchemaValidationError(NFeException):
    """
    El documento no valida contra el XSD.

    Es informativo: nunca corta la transmisión, se reporta en el resultado.
    """
    def __init__(self, message: str, errors: Optional[list] = None, schema_path: Optional[str] = None):
        self.errors = list(errors or [])
        self.schema_path = schema_path
        super().__init__(message, "XSD")


class NFeTransmissionError(NFeException):
    """Error al resolver el servicio o al enviar el mensaje a la SEFAZ"""
    pass


class NFeServiceNotFoundError(NFeTransmissionError):
    """No existe el servicio para (servicio, UF, ambiente, modelo) en el catálogo"""
    pass


class NFeCatalogUnavailableError(NFeTransmissionError):
    """No se pudo cargar el archivo de definición de webservices"""
    pass


class NFeContingencyUnavailableError(NFeTransmissionError):
    """El servicio no está disponible en el modo de contingencia activo"""
    pass


class NFeTransportError(NFeTransmissionError):
    """Error de conexión o HTTP al contactar el webservice"""
    def __init__(self, message: str, http_status: Optional[int] = None, code: Optional[str] = None):
        self.http_status = http_status
        super().__init__(message, code)
