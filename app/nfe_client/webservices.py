"""
Catálogo de webservices SEFAZ por (UF, ambiente, modelo)

Las definiciones viven en `storage/wsnfe_<versao>_mod<modelo>.xml`:

    <WS>
      <UF>
        <sigla>SP</sigla>
        <homologacao>
          <NfeAutorizacao method="..." operation="..." version="4.00">URL</NfeAutorizacao>
        </homologacao>
        <producao>...</producao>
      </UF>
      <UF>
        <sigla>AC</sigla>
        <autorizador>SVRS</autorizador>
      </UF>
    </WS>

Una UF con <autorizador> comparte los servicios de ese bloque; los servicios
propios declarados en la misma UF tienen prioridad (ej: NfeConsultaQR).
"""
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from lxml import etree

from .config import ambiente_nombre
from .exceptions import NFeCatalogUnavailableError, NFeServiceNotFoundError
from .xml_utils import child_by_local, localname

logger = logging.getLogger(__name__)

STORAGE_DIR = Path(__file__).resolve().parent / "storage"

MODELOS = (55, 65)

# {sigla: {ambiente: {servicio: ServiceEntry}}}
Definitions = Dict[str, Dict[str, Dict[str, "ServiceEntry"]]]


@dataclass(frozen=True)
class ServiceEntry:
    """Un servicio del catálogo, tal como aparece en el archivo de definiciones"""

    service: str
    url: str
    method: str
    operation: str
    version: str
    url_chave: str = ""


class CatalogLoader:
    """Lee los archivos de definición del directorio de storage"""

    def __init__(self, storage_dir: Optional[Union[str, Path]] = None):
        self.storage_dir = Path(storage_dir) if storage_dir else STORAGE_DIR

    def path_for(self, version: str, model: int) -> Path:
        return self.storage_dir / f"wsnfe_{version}_mod{model}.xml"

    def load_definitions(self, version: str, model: int) -> bytes:
        path = self.path_for(version, model)
        try:
            return path.read_bytes()
        except OSError as e:
            raise NFeCatalogUnavailableError(
                f"Definiciones de webservices no disponibles ({path.name}): {e}"
            ) from e


def _parse_env_block(block: etree._Element) -> Dict[str, ServiceEntry]:
    services = {}
    for el in block:
        if not isinstance(el.tag, str):
            continue
        name = localname(el.tag)
        url = (el.text or "").strip()
        if not url:
            continue
        services[name] = ServiceEntry(
            service=name,
            url=url,
            method=el.get("method", ""),
            operation=el.get("operation", ""),
            version=el.get("version", ""),
            url_chave=el.get("urlChave", ""),
        )
    return services


def parse_definitions(raw: bytes) -> Definitions:
    """
    Parsea el XML de definiciones a un dict inmutable en la práctica.

    Raises:
        NFeCatalogUnavailableError: Si el XML no es parseable, la estructura no
            es la esperada o un <autorizador> apunta a un bloque inexistente
    """
    parser = etree.XMLParser(remove_blank_text=True, resolve_entities=False, no_network=True)
    try:
        root = etree.fromstring(raw, parser)
    except etree.XMLSyntaxError as e:
        raise NFeCatalogUnavailableError(f"Definiciones de webservices ilegibles: {e}") from e
    if localname(root.tag) != "WS":
        raise NFeCatalogUnavailableError(f"Raíz inesperada en definiciones: <{localname(root.tag)}>")

    own: Definitions = {}
    aliases: Dict[str, str] = {}
    for uf in root:
        if not isinstance(uf.tag, str) or localname(uf.tag) != "UF":
            continue
        sigla_el = child_by_local(uf, "sigla")
        sigla = (sigla_el.text or "").strip().upper() if sigla_el is not None else ""
        if not sigla:
            raise NFeCatalogUnavailableError("Bloque <UF> sin <sigla> en definiciones")
        envs = {}
        for ambiente in ("homologacao", "producao"):
            block = child_by_local(uf, ambiente)
            envs[ambiente] = _parse_env_block(block) if block is not None else {}
        own[sigla] = envs
        autorizador = child_by_local(uf, "autorizador")
        if autorizador is not None and (autorizador.text or "").strip():
            aliases[sigla] = autorizador.text.strip().upper()

    definitions: Definitions = {}
    for sigla, envs in own.items():
        target = aliases.get(sigla)
        if target is None:
            definitions[sigla] = envs
            continue
        if target not in own or target in aliases:
            raise NFeCatalogUnavailableError(f"Autorizador inválido para {sigla}: {target}")
        definitions[sigla] = {
            ambiente: {**own[target][ambiente], **envs[ambiente]}
            for ambiente in ("homologacao", "producao")
        }
    return definitions


class ServiceCatalog:
    """
    Consulta de webservices para una versión de layout.

    Las definiciones de cada modelo se cargan la primera vez que se usan y
    luego solo se leen.
    """

    def __init__(self, version: str, loader: Optional[CatalogLoader] = None):
        self.version = version
        self.loader = loader or CatalogLoader()
        self._lock = threading.Lock()
        self._definitions: Dict[int, Definitions] = {}

    def _definitions_for(self, model: int) -> Definitions:
        model = int(model)
        with self._lock:
            definitions = self._definitions.get(model)
            if definitions is None:
                if model not in MODELOS:
                    raise NFeCatalogUnavailableError(f"Modelo sin catálogo: {model}")
                raw = self.loader.load_definitions(self.version, model)
                definitions = parse_definitions(raw)
                self._definitions[model] = definitions
                logger.debug(f"Catálogo {self.version}/mod{model} cargado: {len(definitions)} siglas")
            return definitions

    def lookup(self, service: str, sigla: str, environment, model: int) -> ServiceEntry:
        """
        Busca un servicio

        Args:
            service: Nombre lógico (ej: 'NfeAutorizacao')
            sigla: UF o autorizador virtual (SVRS, SVCAN, EPEC, ...)
            environment: 1/2 o 'producao'/'homologacao'
            model: 55 o 65

        Raises:
            NFeServiceNotFoundError: Sigla o servicio inexistente
            NFeCatalogUnavailableError: No se pudieron cargar las definiciones
        """
        ambiente = ambiente_nombre(environment)
        key = (sigla or "").strip().upper()
        definitions = self._definitions_for(model)
        try:
            return definitions[key][ambiente][service]
        except KeyError:
            raise NFeServiceNotFoundError(
                f"Servicio {service} no encontrado para {key or '?'} "
                f"({ambiente}, mod{model}, layout {self.version})"
            ) from None

    def services(self, sigla: str, environment, model: int) -> List[str]:
        ambiente = ambiente_nombre(environment)
        definitions = self._definitions_for(model)
        block = definitions.get((sigla or "").strip().upper())
        if block is None:
            raise NFeServiceNotFoundError(f"Sigla {sigla!r} no existe en el catálogo mod{model}")
        return sorted(block[ambiente])
