from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from .device import Device

REPAIR_RESPONSIBLE = "RepairResponsible"
INSPECTION_RESPONSIBLE = "InspectionResponsible"


class OrderStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETELY_PERFORMED = "COMPLETELY_PERFORMED"
    CLOSED = "CLOSED"


class IllegalTransition(Exception):
    pass


class OrderAlreadyClosed(IllegalTransition):
    pass


@dataclass(frozen=True)
class Role:
    name: str


@dataclass(frozen=True)
class Employee:
    id: Optional[int]
    name: str
    surname: str
    email: str
    phone: Optional[str]
    role: Optional[Role]

    @property
    def full_name(self) -> str:
        return f"{self.name} {self.surname}"

    def is_repair_responsible(self) -> bool:
        return self.role is not None and self.role.name.lower() == REPAIR_RESPONSIBLE.lower()

    def same_person(self, other: Employee | None) -> bool:
        # matched by name, two loads of the same row are distinct objects
        if other is None:
            return False
        return (
            self.name.casefold() == other.name.casefold()
            and self.surname.casefold() == other.surname.casefold()
        )


@dataclass(frozen=True)
class ReasonType:
    id: int
    description: str


@dataclass(frozen=True)
class ReasonValue:
    reason_type: ReasonType
    comment: str


@dataclass(frozen=True)
class StatusCode:
    code: str
    display_name: str


@dataclass
class Station:
    code: int
    name: str
    latitude: float
    longitude: float
    device: Device


@dataclass
class Order:
    number: int
    issued_at: datetime
    completed_at: Optional[datetime]
    status: OrderStatus
    station: Station
    responsible: Employee
    closed_at: Optional[datetime] = None
    closed_observation: Optional[str] = None

    def is_completely_performed(self) -> bool:
        return self.status == OrderStatus.COMPLETELY_PERFORMED

    def is_closed(self) -> bool:
        return self.status == OrderStatus.CLOSED

    def belongs_to(self, employee: Employee | None) -> bool:
        return self.responsible.same_person(employee)

    def close(self, at: datetime, observation: str, status: OrderStatus = OrderStatus.CLOSED) -> None:
        """Stamp the closure data and move the order to its terminal status.

        Callers are expected to pass only completely performed orders; this
        method checks just that the order was not closed before.
        """
        if status != OrderStatus.CLOSED:
            raise ValueError(f"Order can only be closed into {OrderStatus.CLOSED.value}, got {status.value}")
        if self.is_closed():
            raise OrderAlreadyClosed(f"Order #{self.number} is already closed.")
        self.closed_at = at
        self.closed_observation = observation
        self.status = status

    def send_device_to_repair(
        self,
        at: datetime,
        reasons: Sequence[ReasonValue],
        comment: str,
        responsible: Employee | None,
    ) -> bool:
        return self.station.device.send_to_repair(at, reasons, comment, responsible)

    def snapshot(self) -> tuple:
        return (self.status, self.closed_at, self.closed_observation)

    def restore(self, snap: tuple) -> None:
        self.status, self.closed_at, self.closed_observation = snap

    def __str__(self) -> str:
        return f"Order {self.number} (completed: {self.completed_at})"


@dataclass
class Session:
    username: str
    employee: Employee
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def close(self, at: datetime | None = None) -> None:
        if self.ended_at is None:
            self.ended_at = at or datetime.now()
