"""
Resolución del endpoint SOAP para un servicio
"""
import logging
import re
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .config import ambiente_nombre, get_cuf
from .contingency import NO_CONTINGENCY, ContingencySnapshot, ContingencyType
from .exceptions import NFeContingencyUnavailableError, NFeInvalidArgumentError
from .webservices import ServiceCatalog

logger = logging.getLogger(__name__)

URL_PORTAL = "http://www.portalfiscal.inf.br/nfe"

# Modos sin ningún webservice disponible
_NO_SERVICE_MODES = (ContingencyType.FSDA, ContingencyType.OFFLINE)

_VERSION_RE = re.compile(r"^\d+(\.\d+)*$")


@dataclass(frozen=True)
class ServiceDescriptor:
    """Endpoint completamente resuelto, listo para el transporte"""

    service: str
    url: str
    method: str
    operation: str
    version: str
    namespace: str
    soap_action: str
    c_uf: int
    sigla: str
    environment: str
    model: int
    header: Optional[Dict[str, str]] = None
    url_chave: str = ""


def parse_version(version: str) -> Tuple[int, ...]:
    """'3.10' -> (3, 10). Compara versiones numéricamente y no como texto."""
    text = (version or "").strip()
    if not _VERSION_RE.match(text):
        raise NFeInvalidArgumentError(f"Versión inválida: {version!r}")
    return tuple(int(part) for part in text.split("."))


def check_availability(service: str, state: ContingencySnapshot) -> None:
    if state.type in _NO_SERVICE_MODES:
        raise NFeContingencyUnavailableError(
            f"Contingencia {state.type.value}: no hay webservices disponibles ({service})"
        )
    if state.type is ContingencyType.EPEC and service != "NfeAutorizacao":
        raise NFeContingencyUnavailableError(
            f"Contingencia EPEC: solo NfeAutorizacao está disponible, no {service}"
        )


class EndpointResolver:
    """Combina catálogo y contingencia para obtener un ServiceDescriptor"""

    def __init__(self, catalog: ServiceCatalog):
        self.catalog = catalog

    def resolve(
        self,
        service: str,
        uf: str,
        environment,
        model: int,
        state: Optional[ContingencySnapshot] = None,
        ignore_contingency: bool = False,
    ) -> ServiceDescriptor:
        """
        Resuelve el endpoint de `service`

        Args:
            service: Nombre lógico del servicio
            uf: Sigla de la UF del emisor
            environment: 1/2 o 'producao'/'homologacao'
            model: 55 o 65
            state: Contingencia vigente (default: sin contingencia)
            ignore_contingency: Resuelve como si no hubiera contingencia

        Raises:
            NFeContingencyUnavailableError: El modo vigente no permite el servicio
            NFeServiceNotFoundError: El catálogo no tiene el servicio
            NFeCatalogUnavailableError: Catálogo ilegible
        """
        state = state or NO_CONTINGENCY
        sigla = (uf or "").strip().upper()
        c_uf = get_cuf(sigla)
        ambiente = ambiente_nombre(environment)

        key = sigla
        if not ignore_contingency:
            check_availability(service, state)
            if state.active:
                key = state.type.catalog_key

        entry = self.catalog.lookup(service, key, ambiente, model)

        namespace = f"{URL_PORTAL}/wsdl/{entry.operation}"
        header = None
        if parse_version(self.catalog.version) < (4, 0):
            header = {"cUF": str(c_uf), "versaoDados": entry.version}

        descriptor = ServiceDescriptor(
            service=service,
            url=entry.url,
            method=entry.method,
            operation=entry.operation,
            version=entry.version,
            namespace=namespace,
            soap_action=f"{namespace}/{entry.method}",
            c_uf=c_uf,
            sigla=sigla,
            environment=ambiente,
            model=int(model),
            header=header,
            url_chave=entry.url_chave,
        )
        logger.debug(f"{service} [{key}/{ambiente}/mod{model}] -> {entry.url}")
        return descriptor
