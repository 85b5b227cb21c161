"""
Validador XSD local (offline) para documentos NF-e.

Los esquemas del layout se buscan en el directorio `schemes` configurado como
`<method>_v<versao>.xsd` (ej: nfe_v4.00.xsd). Los include/import se resuelven
desde el mismo directorio, nunca desde la red.

Si el XSD no existe el documento se considera válido.
"""
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

from lxml import etree

from .xml_utils import XmlInput

logger = logging.getLogger(__name__)

PORTAL_XSD_PREFIXES = (
    "http://www.portalfiscal.inf.br/nfe/",
    "https://www.portalfiscal.inf.br/nfe/",
)

MAX_ERRORS = 30


class NFeLocalResolver(etree.Resolver):
    """Resolver que mapea includes/imports del portal a archivos locales."""

    def __init__(self, xsd_dir: Path):
        super().__init__()
        self.xsd_dir = Path(xsd_dir).resolve()

    def resolve(self, url: str, pubid: str, context) -> Optional[etree._Entity]:
        if url.startswith(PORTAL_XSD_PREFIXES):
            local_path = self.xsd_dir / url.split("/")[-1]
        elif not url.startswith(("http://", "https://")):
            local_path = self.xsd_dir / url
        else:
            return None
        if local_path.exists():
            return self.resolve_filename(str(local_path), context)
        return None


def _parser_with_resolver(xsd_dir: Path) -> etree.XMLParser:
    parser = etree.XMLParser(
        remove_blank_text=False,
        load_dtd=False,
        resolve_entities=False,
        no_network=True,
        huge_tree=True,
    )
    parser.resolvers.add(NFeLocalResolver(xsd_dir))
    return parser


def schema_path_for(schemes_dir: Union[str, Path], version: str, method: str = "nfe") -> Path:
    """Ruta del XSD principal: <schemes_dir>/<method>_v<version>.xsd"""
    return Path(schemes_dir) / f"{method}_v{version}.xsd"


def load_schema(main_xsd: Path) -> etree.XMLSchema:
    """
    Carga un XSD resolviendo includes/imports desde su propio directorio.

    Raises:
        etree.XMLSchemaParseError: Si el XSD es inválido
    """
    main_xsd = Path(main_xsd).resolve()
    parser = _parser_with_resolver(main_xsd.parent)
    doc = etree.parse(str(main_xsd), parser)
    return etree.XMLSchema(doc)


def validate_xml_against_xsd(xml: XmlInput, schema_path: Union[str, Path]) -> Tuple[bool, List[str]]:
    """
    Valida un documento contra el XSD indicado.

    Returns:
        Tupla (ok, lista_errores) con errores "line N, col M: mensaje"
    """
    schema_path = Path(schema_path)
    if not schema_path.is_file():
        logger.debug(f"XSD no encontrado ({schema_path}); se considera válido")
        return (True, [])

    try:
        schema = load_schema(schema_path)
    except (etree.XMLSchemaParseError, etree.XMLSyntaxError, OSError) as exc:
        return (False, [f"No se pudo cargar XSD {schema_path.name}: {exc}"])

    if isinstance(xml, etree._Element):
        doc = xml
    else:
        xml_bytes = xml.encode("utf-8") if isinstance(xml, str) else xml
        try:
            doc = etree.fromstring(xml_bytes, _parser_with_resolver(schema_path.parent))
        except etree.XMLSyntaxError as e:
            return (False, [f"Error de sintaxis XML: {e}"])

    if schema.validate(doc):
        return (True, [])

    errors = []
    for error in list(schema.error_log)[:MAX_ERRORS]:
        line_info = f"line {error.line}" if error.line else "line ?"
        col_info = f", col {error.column}" if error.column else ""
        errors.append(f"{line_info}{col_info}: {error.message}")
    return (False, errors)


def is_valid(xml: XmlInput, schema_path: Union[str, Path]) -> bool:
    ok, _ = validate_xml_against_xsd(xml, schema_path)
    return ok
