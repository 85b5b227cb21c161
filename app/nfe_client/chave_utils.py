"""
Utilidades para cálculo y validación de la chave de acesso NF-e.

La chave es un número de 44 dígitos:
    cUF(2) AAMM(4) CNPJ(14) mod(2) serie(3) nNF(9) tpEmis(1) cNF(8) cDV(1)

El último dígito es el DV calculado con módulo 11 (pesos 2..9).
"""
import re
from typing import Tuple

CHAVE_LEN = 44
# Posición (0-indexada) del tpEmis dentro de la chave
TP_EMIS_POS = 34

_ID_RE = re.compile(r"^(?P<prefix>\D{3})?(?P<chave>\d{44})$")


def calc_dv_mod11(base: str) -> int:
    """
    Calcula el dígito verificador (DV) usando módulo 11 con pesos 2..9.

    Args:
        base: String numérico SIN el DV final (43 dígitos para la chave)

    Returns:
        DV calculado (0-9)
    """
    s = (base or "").strip()
    if not s.isdigit():
        raise ValueError(f"base debe ser numérica, recibido: {base!r}")

    weight = 2
    total = 0
    for ch in reversed(s):
        total += int(ch) * weight
        weight = 2 if weight == 9 else weight + 1

    mod = total % 11
    return 0 if mod <= 1 else (11 - mod)


def validate_chave(chave: str) -> Tuple[bool, int, int]:
    """
    Valida una chave verificando si el DV es correcto.

    Returns:
        Tupla (es_valida, dv_original, dv_calculado)
    """
    s = (chave or "").strip()
    if not s.isdigit() or len(s) != CHAVE_LEN:
        return (False, -1, -1)
    dv_original = int(s[43])
    dv_calculado = calc_dv_mod11(s[:43])
    return (dv_original == dv_calculado, dv_original, dv_calculado)


def fix_chave(chave: str) -> str:
    """Corrige el DV de una chave de 44 dígitos y retorna la chave corregida."""
    s = (chave or "").strip()
    if not s.isdigit() or len(s) != CHAVE_LEN:
        raise ValueError(f"Chave inválida (se esperan 44 dígitos): {chave!r}")
    base = s[:43]
    return base + str(calc_dv_mod11(base))


def replace_tp_emis(chave: str, tp_emis: int) -> str:
    """
    Reemplaza el dígito de tpEmis (posición 35) y recalcula el DV.

    El cNF (posiciones 36-43) se conserva.
    """
    s = (chave or "").strip()
    if not s.isdigit() or len(s) != CHAVE_LEN:
        raise ValueError(f"Chave inválida (se esperan 44 dígitos): {chave!r}")
    if not 0 <= int(tp_emis) <= 9:
        raise ValueError(f"tpEmis inválido: {tp_emis!r}")
    base = s[:TP_EMIS_POS] + str(int(tp_emis)) + s[TP_EMIS_POS + 1:43]
    return base + str(calc_dv_mod11(base))


def split_id(id_attr: str) -> Tuple[str, str]:
    """
    Separa el atributo Id de infNFe en (prefijo, chave).

    Ej: 'NFe3517...' -> ('NFe', '3517...')
    """
    m = _ID_RE.match((id_attr or "").strip())
    if m is None:
        raise ValueError(f"Id inválido (se espera '<prefijo><44 dígitos>'): {id_attr!r}")
    return m.group("prefix") or "", m.group("chave")
