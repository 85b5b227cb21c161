"""
Configuración para cliente NF-e / NFC-e
"""
import json
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .exceptions import NFeInvalidArgumentError

load_dotenv()

# Códigos IBGE de las unidades de la federación
CODIGOS_UF = {
    "RO": 11,
    "AC": 12,
    "AM": 13,
    "RR": 14,
    "PA": 15,
    "AP": 16,
    "TO": 17,
    "MA": 21,
    "PI": 22,
    "CE": 23,
    "RN": 24,
    "PB": 25,
    "PE": 26,
    "AL": 27,
    "SE": 28,
    "BA": 29,
    "MG": 31,
    "ES": 32,
    "RJ": 33,
    "SP": 35,
    "PR": 41,
    "SC": 42,
    "RS": 43,
    "MS": 50,
    "MT": 51,
    "GO": 52,
    "DF": 53,
}

TIMEZONE_BY_UF = {
    "AC": "America/Rio_Branco",
    "AL": "America/Maceio",
    "AM": "America/Manaus",
    "AP": "America/Belem",
    "BA": "America/Bahia",
    "CE": "America/Fortaleza",
    "DF": "America/Sao_Paulo",
    "ES": "America/Sao_Paulo",
    "GO": "America/Sao_Paulo",
    "MA": "America/Fortaleza",
    "MG": "America/Sao_Paulo",
    "MS": "America/Campo_Grande",
    "MT": "America/Cuiaba",
    "PA": "America/Belem",
    "PB": "America/Fortaleza",
    "PE": "America/Recife",
    "PI": "America/Fortaleza",
    "PR": "America/Sao_Paulo",
    "RJ": "America/Sao_Paulo",
    "RN": "America/Fortaleza",
    "RO": "America/Porto_Velho",
    "RR": "America/Boa_Vista",
    "RS": "America/Sao_Paulo",
    "SC": "America/Sao_Paulo",
    "SE": "America/Maceio",
    "SP": "America/Sao_Paulo",
    "TO": "America/Araguaina",
}

AMBIENTES = {1: "producao", 2: "homologacao"}

_VERSAO_RE = re.compile(r"^\d+\.\d{2}$")

DEFAULT_SCHEMES_ROOT = Path(__file__).resolve().parents[2] / "schemes"


def get_cuf(sigla: str) -> int:
    """Código numérico de la UF a partir de la sigla (ej: 'SP' -> 35)"""
    try:
        return CODIGOS_UF[(sigla or "").strip().upper()]
    except KeyError:
        raise NFeInvalidArgumentError(f"UF desconocida: {sigla!r}") from None


def get_sigla(cuf: Any) -> str:
    """Sigla de la UF a partir del código numérico (ej: 35 -> 'SP')"""
    try:
        code = int(cuf)
    except (TypeError, ValueError):
        raise NFeInvalidArgumentError(f"cUF inválido: {cuf!r}") from None
    for sigla, value in CODIGOS_UF.items():
        if value == code:
            return sigla
    raise NFeInvalidArgumentError(f"cUF desconocido: {cuf!r}")


def ambiente_nombre(tp_amb: Any) -> str:
    """
    Normaliza el ambiente a 'producao' u 'homologacao'.

    Acepta 1/2 (int o str) o los nombres ya normalizados.
    """
    if isinstance(tp_amb, str):
        value = tp_amb.strip().lower()
        if value in AMBIENTES.values():
            return value
        if value.isdigit():
            tp_amb = int(value)
    if tp_amb in AMBIENTES:
        return AMBIENTES[tp_amb]
    raise NFeInvalidArgumentError(
        f"Ambiente inválido: {tp_amb!r}. Debe ser 1 (producao) o 2 (homologacao)"
    )


@dataclass
class NFeConfig:
    """Configuración tipada del emisor (campos fijos, validados al cargar)"""

    tp_amb: int
    razao_social: str
    sigla_uf: str
    cnpj: str
    schemes: str
    versao: str
    csc: str = ""
    csc_id: str = ""
    atualizacao: str = ""
    cert_path: Optional[str] = None
    cert_password: Optional[str] = None
    ca_bundle_path: Optional[str] = None
    request_timeout: int = 30

    def __post_init__(self):
        if self.tp_amb not in AMBIENTES:
            raise NFeInvalidArgumentError(f"tpAmb inválido: {self.tp_amb!r}. Debe ser 1 o 2")
        self.sigla_uf = (self.sigla_uf or "").strip().upper()
        if self.sigla_uf not in CODIGOS_UF:
            raise NFeInvalidArgumentError(f"siglaUF inválida: {self.sigla_uf!r}")
        digits = re.sub(r"\D", "", self.cnpj or "")
        if len(digits) not in (11, 14):
            raise NFeInvalidArgumentError(f"cnpj/cpf inválido: {self.cnpj!r}")
        self.cnpj = digits
        if not _VERSAO_RE.match(self.versao or ""):
            raise NFeInvalidArgumentError(f"versao inválida: {self.versao!r} (ej: '4.00')")
        if not (self.schemes or "").strip():
            raise NFeInvalidArgumentError("schemes no puede estar vacío")
        if self.request_timeout <= 0:
            raise NFeInvalidArgumentError("request_timeout debe ser positivo")

    @property
    def ambiente(self) -> str:
        return AMBIENTES[self.tp_amb]

    @property
    def schemes_path(self) -> Path:
        """Directorio de XSD para el layout configurado"""
        root = os.getenv("NFE_SCHEMES_DIR")
        base = Path(root) if root else DEFAULT_SCHEMES_ROOT
        return base / self.schemes

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NFeConfig":
        """
        Construye la configuración desde el formato JSON clásico
        (tpAmb, razaosocial, siglaUF, cnpj, schemes, versao, CSC, CSCid).

        Raises:
            NFeInvalidArgumentError: Si falta un campo obligatorio o es inválido
        """
        required = ("tpAmb", "razaosocial", "siglaUF", "cnpj", "schemes", "versao")
        missing = [k for k in required if data.get(k) in (None, "")]
        if missing:
            raise NFeInvalidArgumentError(f"Faltan campos obligatorios en la configuración: {missing}")
        try:
            tp_amb = int(data["tpAmb"])
        except (TypeError, ValueError):
            raise NFeInvalidArgumentError(f"tpAmb inválido: {data['tpAmb']!r}") from None

        return cls(
            tp_amb=tp_amb,
            razao_social=str(data["razaosocial"]),
            sigla_uf=str(data["siglaUF"]),
            cnpj=str(data["cnpj"]),
            schemes=str(data["schemes"]),
            versao=str(data["versao"]),
            csc=str(data.get("CSC") or ""),
            csc_id=str(data.get("CSCid") or ""),
            atualizacao=str(data.get("atualizacao") or ""),
        )

    @classmethod
    def from_json(cls, text: str) -> "NFeConfig":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise NFeInvalidArgumentError(f"Configuración JSON inválida: {e}") from e
        if not isinstance(data, dict):
            raise NFeInvalidArgumentError("La configuración JSON debe ser un objeto")
        return cls.from_dict(data)


def get_nfe_config(config_path: Optional[str] = None) -> NFeConfig:
    """
    Obtiene la configuración NF-e desde NFE_CONFIG_PATH y variables de entorno

    Args:
        config_path: Ruta al JSON de configuración. Si None, usa NFE_CONFIG_PATH

    Returns:
        Configuración NF-e
    """
    path = config_path or os.getenv("NFE_CONFIG_PATH")
    if not path:
        raise NFeInvalidArgumentError("Falta NFE_CONFIG_PATH en el entorno")
    cfg_file = Path(path).expanduser()
    if not cfg_file.is_file():
        raise NFeInvalidArgumentError(f"Archivo de configuración no encontrado: {cfg_file}")

    cfg = NFeConfig.from_json(cfg_file.read_text(encoding="utf-8"))

    tp_amb = os.getenv("NFE_TP_AMB")
    if tp_amb:
        cfg.tp_amb = 1 if ambiente_nombre(tp_amb) == "producao" else 2
    cfg.csc = os.getenv("NFE_CSC") or cfg.csc
    cfg.csc_id = os.getenv("NFE_CSC_ID") or cfg.csc_id
    cfg.cert_path = os.getenv("NFE_CERT_PATH") or cfg.cert_path
    cfg.cert_password = os.getenv("NFE_CERT_PASSWORD") or cfg.cert_password
    cfg.ca_bundle_path = os.getenv("NFE_CA_BUNDLE_PATH") or cfg.ca_bundle_path
    timeout = os.getenv("NFE_REQUEST_TIMEOUT")
    if timeout:
        try:
            cfg.request_timeout = int(timeout)
        except ValueError:
            raise NFeInvalidArgumentError(f"NFE_REQUEST_TIMEOUT inválido: {timeout!r}") from None

    return cfg
