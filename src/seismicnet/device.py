"""Seismograph status machine and its state history ledger.

Status changes go through one transition table; every change that fires
closes the open history entry and appends a new open one, so at any time the
ledger holds exactly one entry without an end.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional, Sequence

from .domain import Employee, IllegalTransition, ReasonValue

logger = logging.getLogger(__name__)


class HistoryError(Exception):
    pass


class DeviceStatus(str, Enum):
    ONLINE = "ONLINE"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"
    DISABLED_FOR_INSPECTION = "DISABLED_FOR_INSPECTION"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    DeviceStatus.ONLINE: "Online",
    DeviceStatus.OUT_OF_SERVICE: "Out of Service",
    DeviceStatus.DISABLED_FOR_INSPECTION: "Disabled for Inspection",
}


class DeviceOperation(str, Enum):
    SEND_TO_REPAIR = "send_to_repair"
    SET_ONLINE = "set_online"


@dataclass(frozen=True)
class HistoryEffect:
    status: DeviceStatus
    carries_reasons: bool = False
    comment: Optional[str] = None


# None marks a no-op cell: the request is legal but changes nothing.
TRANSITIONS: dict[tuple[DeviceStatus, DeviceOperation], Optional[HistoryEffect]] = {
    (DeviceStatus.ONLINE, DeviceOperation.SEND_TO_REPAIR): HistoryEffect(
        DeviceStatus.OUT_OF_SERVICE, carries_reasons=True
    ),
    (DeviceStatus.ONLINE, DeviceOperation.SET_ONLINE): None,
    (DeviceStatus.DISABLED_FOR_INSPECTION, DeviceOperation.SEND_TO_REPAIR): HistoryEffect(
        DeviceStatus.OUT_OF_SERVICE, carries_reasons=True
    ),
    (DeviceStatus.DISABLED_FOR_INSPECTION, DeviceOperation.SET_ONLINE): HistoryEffect(
        DeviceStatus.ONLINE, comment="cleared by inspection"
    ),
    (DeviceStatus.OUT_OF_SERVICE, DeviceOperation.SEND_TO_REPAIR): None,
    (DeviceStatus.OUT_OF_SERVICE, DeviceOperation.SET_ONLINE): HistoryEffect(
        DeviceStatus.ONLINE, comment="repair completed"
    ),
}


def transition(
    current: DeviceStatus, operation: DeviceOperation
) -> tuple[DeviceStatus, Optional[HistoryEffect]]:
    try:
        effect = TRANSITIONS[(current, operation)]
    except KeyError:
        raise IllegalTransition(f"No transition for {operation!r} from {current!r}") from None
    if effect is None:
        return current, None
    return effect.status, effect


@dataclass
class StateHistoryEntry:
    status: DeviceStatus
    started_at: datetime
    ended_at: Optional[datetime] = None
    reasons: tuple[ReasonValue, ...] = ()
    comment: Optional[str] = None
    responsible: Optional[Employee] = None

    def is_current(self) -> bool:
        return self.ended_at is None


@dataclass
class Device:
    id: int
    acquired_at: datetime
    serial_no: int
    history: list[StateHistoryEntry] = field(default_factory=list)

    @classmethod
    def provision(
        cls,
        id: int,
        acquired_at: datetime,
        serial_no: int,
        status: DeviceStatus = DeviceStatus.ONLINE,
    ) -> Device:
        return cls(id, acquired_at, serial_no, [StateHistoryEntry(status, acquired_at)])

    @classmethod
    def from_history(
        cls, id: int, acquired_at: datetime, serial_no: int, history: Sequence[StateHistoryEntry]
    ) -> Device:
        open_entries = [e for e in history if e.is_current()]
        if len(open_entries) != 1:
            raise HistoryError(
                f"Device {id} history must hold exactly one open entry, found {len(open_entries)}"
            )
        return cls(id, acquired_at, serial_no, list(history))

    @property
    def status(self) -> DeviceStatus:
        return self.current().status

    def current(self) -> StateHistoryEntry:
        for entry in reversed(self.history):
            if entry.is_current():
                return entry
        raise HistoryError(f"Device {self.id} has no current history entry")

    def send_to_repair(
        self,
        at: datetime,
        reasons: Sequence[ReasonValue],
        comment: str,
        responsible: Employee | None,
    ) -> bool:
        return self._apply(DeviceOperation.SEND_TO_REPAIR, at, tuple(reasons), comment, responsible)

    def set_online(self, at: datetime, responsible: Employee | None) -> bool:
        return self._apply(DeviceOperation.SET_ONLINE, at, (), None, responsible)

    def _apply(
        self,
        operation: DeviceOperation,
        at: datetime,
        reasons: tuple[ReasonValue, ...],
        comment: Optional[str],
        responsible: Employee | None,
    ) -> bool:
        current = self.current()
        new_status, effect = transition(current.status, operation)
        if effect is None:
            logger.debug("Device %s: %s ignored in status %s", self.id, operation.value, current.status.value)
            return False
        if at < current.started_at:
            raise HistoryError(
                f"Transition at {at} precedes current period start {current.started_at} on device {self.id}"
            )

        current.ended_at = at
        self.history.append(
            StateHistoryEntry(
                status=new_status,
                started_at=at,
                reasons=reasons if effect.carries_reasons else (),
                comment=effect.comment if effect.comment is not None else comment,
                responsible=responsible,
            )
        )
        logger.info("Device %s: %s -> %s at %s", self.id, current.status.value, new_status.value, at)
        return True

    def snapshot(self) -> tuple[StateHistoryEntry, ...]:
        return tuple(replace(e) for e in self.history)

    def restore(self, snap: tuple[StateHistoryEntry, ...]) -> None:
        self.history = [replace(e) for e in snap]
