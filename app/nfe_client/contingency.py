"""
Estado de contingencia (modo de operación degradado) del emisor

Una única declaración de contingencia vale para todas las transmisiones del
proceso. El holder `Contingency` se comparte entre hilos; las lecturas se hacen
siempre sobre un `ContingencySnapshot` inmutable.
"""
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from .exceptions import NFeInvalidArgumentError

logger = logging.getLogger(__name__)

MOTIVE_MIN_LEN = 15
MOTIVE_MAX_LEN = 256

# UFs cuyo SVC por defecto es el SVC-RS (las demás usan SVC-AN)
UFS_SVC_RS = {"AM", "BA", "CE", "GO", "MA", "MS", "MT", "PA", "PE", "PI", "PR"}


class ContingencyType(Enum):
    NONE = ""
    SVC_AN = "SVCAN"
    SVC_RS = "SVCRS"
    EPEC = "EPEC"
    FSDA = "FSDA"
    OFFLINE = "OFFLINE"

    @property
    def tp_emis(self) -> int:
        return TP_EMIS[self]

    @property
    def catalog_key(self) -> str:
        """Sigla usada en el catálogo de webservices en lugar de la UF"""
        return self.value

    @classmethod
    def parse(cls, value: Union["ContingencyType", str, None]) -> "ContingencyType":
        if isinstance(value, cls):
            return value
        text = (value or "").strip().upper().replace("-", "").replace("_", "")
        for member in cls:
            if text in (member.value, member.name.replace("_", "")):
                return member
        raise NFeInvalidArgumentError(f"Tipo de contingencia desconocido: {value!r}")


TP_EMIS = {
    ContingencyType.NONE: 1,
    ContingencyType.EPEC: 4,
    ContingencyType.FSDA: 5,
    ContingencyType.SVC_AN: 6,
    ContingencyType.SVC_RS: 7,
    ContingencyType.OFFLINE: 9,
}


@dataclass(frozen=True)
class ContingencySnapshot:
    """Vista inmutable de la contingencia vigente"""

    type: ContingencyType = ContingencyType.NONE
    motive: str = ""
    activated_at: Optional[datetime] = None

    @property
    def tp_emis(self) -> int:
        return self.type.tp_emis

    @property
    def active(self) -> bool:
        return self.type is not ContingencyType.NONE


NO_CONTINGENCY = ContingencySnapshot()


class Contingency:
    """
    Declaración de contingencia compartida por el proceso.

    Se crea sin contingencia y solo cambia con activate()/clear().
    """

    def __init__(self, snapshot: Optional[ContingencySnapshot] = None):
        self._lock = threading.Lock()
        self._state = snapshot or NO_CONTINGENCY

    def activate(
        self,
        type: Union[ContingencyType, str, None],
        motive: str,
        timestamp: Optional[datetime] = None,
        uf: Optional[str] = None,
    ) -> ContingencySnapshot:
        """
        Activa un modo de contingencia

        Args:
            type: Tipo de contingencia. Si es None y se informa `uf`, se usa el
                SVC que corresponde a la UF (SVC-AN o SVC-RS)
            motive: Justificación (xJust)
            timestamp: Momento de entrada en contingencia (dhCont). Default: ahora
            uf: Sigla de la UF del emisor

        Raises:
            NFeInvalidArgumentError: Si el tipo es NONE o el motivo está vacío
        """
        if type is None:
            if not uf:
                raise NFeInvalidArgumentError("Debe informar el tipo de contingencia o la UF")
            ctype = ContingencyType.SVC_RS if uf.strip().upper() in UFS_SVC_RS else ContingencyType.SVC_AN
        else:
            ctype = ContingencyType.parse(type)
        if ctype is ContingencyType.NONE:
            raise NFeInvalidArgumentError("No se puede activar una contingencia de tipo NONE; use clear()")

        motive = (motive or "").strip()
        if not motive:
            raise NFeInvalidArgumentError("El motivo de la contingencia no puede estar vacío")
        if len(motive) > MOTIVE_MAX_LEN:
            raise NFeInvalidArgumentError(
                f"El motivo de la contingencia excede {MOTIVE_MAX_LEN} caracteres ({len(motive)})"
            )
        if len(motive) < MOTIVE_MIN_LEN:
            logger.warning(
                f"Motivo de contingencia con {len(motive)} caracteres; el layout exige al menos {MOTIVE_MIN_LEN}"
            )

        snapshot = ContingencySnapshot(
            type=ctype,
            motive=motive,
            activated_at=timestamp or datetime.now(timezone.utc),
        )
        with self._lock:
            self._state = snapshot
        logger.info(f"Contingencia {ctype.value} activada (tpEmis={ctype.tp_emis})")
        return snapshot

    def clear(self) -> ContingencySnapshot:
        with self._lock:
            previous = self._state
            self._state = NO_CONTINGENCY
        if previous.active:
            logger.info(f"Contingencia {previous.type.value} desactivada")
        return NO_CONTINGENCY

    deactivate = clear

    def current(self) -> ContingencySnapshot:
        with self._lock:
            return self._state

    @property
    def type(self) -> ContingencyType:
        return self.current().type

    def to_json(self) -> str:
        """Serializa la declaración vigente (para persistencia externa)"""
        state = self.current()
        return json.dumps(
            {
                "type": state.type.value,
                "motive": state.motive,
                "timestamp": state.activated_at.isoformat() if state.activated_at else None,
                "tpEmis": state.tp_emis,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, text: str) -> "Contingency":
        """Restaura una declaración serializada con to_json()"""
        try:
            data = json.loads(text or "{}")
        except json.JSONDecodeError as e:
            raise NFeInvalidArgumentError(f"JSON de contingencia inválido: {e}") from e

        ctype = ContingencyType.parse(data.get("type"))
        holder = cls()
        if ctype is ContingencyType.NONE:
            return holder

        raw_ts = data.get("timestamp")
        if isinstance(raw_ts, (int, float)):
            activated_at = datetime.fromtimestamp(raw_ts, tz=timezone.utc)
        elif raw_ts:
            try:
                activated_at = datetime.fromisoformat(raw_ts)
            except ValueError:
                raise NFeInvalidArgumentError(f"timestamp de contingencia inválido: {raw_ts!r}") from None
        else:
            activated_at = None
        holder.activate(ctype, data.get("motive") or "", activated_at)
        return holder
