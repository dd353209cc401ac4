from __future__ import annotations

import logging
from collections import defaultdict

from psycopg import Connection

from ..device import Device, DeviceStatus, StateHistoryEntry
from ..domain import (
    REPAIR_RESPONSIBLE,
    Employee,
    Order,
    OrderStatus,
    ReasonType,
    ReasonValue,
    Role,
    Station,
    StatusCode,
)
from ..repositories.device_repo import DeviceRepository
from ..repositories.employee_repo import EmployeeRepository
from ..repositories.order_repo import OrderRepository
from ..repositories.reason_repo import ReasonTypeRepository
from ..repositories.status_repo import StatusRepository

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    pass


class ConcurrentModificationError(PersistenceError):
    pass


def _employee_from_row(row: dict, prefix: str = "") -> Employee | None:
    if row.get(f"{prefix}id") is None:
        return None
    role_name = row.get("role_name")
    return Employee(
        id=int(row[f"{prefix}id"]),
        name=row[f"{prefix}name"],
        surname=row[f"{prefix}surname"],
        email=row[f"{prefix}email"],
        phone=row.get(f"{prefix}phone"),
        role=Role(role_name) if role_name else None,
    )


class PersistenceGateway:
    """Loads and stores the close-order aggregate through the repositories.

    Every method takes the connection it runs on; transaction boundaries
    belong to the caller.
    """

    def __init__(
        self,
        *,
        order_repo: OrderRepository,
        device_repo: DeviceRepository,
        employee_repo: EmployeeRepository,
        reason_repo: ReasonTypeRepository,
        status_repo: StatusRepository,
    ) -> None:
        self.order_repo = order_repo
        self.device_repo = device_repo
        self.employee_repo = employee_repo
        self.reason_repo = reason_repo
        self.status_repo = status_repo

    def find_eligible_orders(self, conn: Connection, employee_id: int) -> list[Order]:
        rows = self.order_repo.list_completed_for_responsible(conn, employee_id)
        # orders on the same station share one Device
        devices: dict[int, Device] = {}
        return [self._order_from_row(conn, r, devices) for r in rows]

    def find_order(self, conn: Connection, number: int) -> Order | None:
        row = self.order_repo.get_by_number(conn, number)
        if row is None:
            return None
        return self._order_from_row(conn, row)

    def find_device(self, conn: Connection, device_id: int) -> Device | None:
        row = self.device_repo.get(conn, device_id)
        if row is None:
            return None
        return self._load_device(conn, int(row["id"]), row["acquired_at"], int(row["serial_no"]))

    def find_all_reason_types(self, conn: Connection) -> list[ReasonType]:
        return [ReasonType(id=int(r["id"]), description=r["description"]) for r in self.reason_repo.list(conn)]

    def find_all_status_codes(self, conn: Connection) -> list[StatusCode]:
        return [StatusCode(code=r["code"], display_name=r["display_name"]) for r in self.status_repo.list(conn)]

    def find_repair_responsibles(self, conn: Connection) -> list[Employee]:
        rows = self.employee_repo.list_by_role(conn, REPAIR_RESPONSIBLE)
        return [_employee_from_row(r) for r in rows]

    def find_employee_by_username(self, conn: Connection, username: str) -> Employee | None:
        row = self.employee_repo.get_by_username(conn, username)
        if row is None:
            return None
        return _employee_from_row(row)

    def update_order(
        self,
        conn: Connection,
        order: Order,
        *,
        expected_status: OrderStatus = OrderStatus.COMPLETELY_PERFORMED,
    ) -> None:
        updated = self.order_repo.update_closure(
            conn,
            number=order.number,
            status=order.status.value,
            closed_at=order.closed_at,
            closed_observation=order.closed_observation,
            expected_status=expected_status.value,
        )
        if not updated:
            raise ConcurrentModificationError(
                f"Order #{order.number} is no longer {expected_status.value} in the store."
            )

    def update_device_status(self, conn: Connection, device: Device) -> None:
        current = device.current()
        self.device_repo.update_status(
            conn,
            device_id=device.id,
            status=current.status.value,
            status_since=current.started_at,
        )

    def append_device_history_entry(
        self,
        conn: Connection,
        device_id: int,
        entry: StateHistoryEntry,
        *,
        previous: StateHistoryEntry,
    ) -> int:
        """Close the stored open period and append ``entry`` with its reasons.

        ``previous`` is the period ``entry`` replaces; the store must still hold
        it open with the same status and start, otherwise the device was changed
        elsewhere since it was loaded.
        """
        closed = self.device_repo.close_open_period(
            conn,
            device_id=device_id,
            ended_at=entry.started_at,
            status=previous.status.value,
            started_at=previous.started_at,
        )
        if closed != 1:
            raise ConcurrentModificationError(
                f"Device {device_id} no longer has an open {previous.status.value} period "
                f"started at {previous.started_at} in the store."
            )
        history_id = self.device_repo.insert_history(
            conn,
            device_id=device_id,
            status=entry.status.value,
            started_at=entry.started_at,
            comment=entry.comment,
            employee_id=entry.responsible.id if entry.responsible else None,
        )
        for reason in entry.reasons:
            self.device_repo.add_reason(
                conn,
                history_id=history_id,
                reason_type_id=reason.reason_type.id,
                comment=reason.comment,
            )
        logger.debug("Stored history entry %s for device %s", history_id, device_id)
        return history_id

    def _order_from_row(self, conn: Connection, row: dict, devices: dict[int, Device] | None = None) -> Order:
        if devices is None:
            devices = {}
        device_id = int(row["device_id"])
        if device_id not in devices:
            devices[device_id] = self._load_device(conn, device_id, row["acquired_at"], int(row["serial_no"]))
        device = devices[device_id]
        station = Station(
            code=int(row["station_code"]),
            name=row["station_name"],
            latitude=float(row["latitude"]),
            longitude=float(row["longitude"]),
            device=device,
        )
        return Order(
            number=int(row["number"]),
            issued_at=row["issued_at"],
            completed_at=row["completed_at"],
            status=OrderStatus(row["status"]),
            station=station,
            responsible=_employee_from_row(row, prefix="employee_"),
            closed_at=row["closed_at"],
            closed_observation=row["closed_observation"],
        )

    def _load_device(self, conn: Connection, device_id: int, acquired_at, serial_no: int) -> Device:
        history_rows = self.device_repo.list_history(conn, device_id)
        reason_rows = self.device_repo.list_reasons(conn, [int(h["id"]) for h in history_rows])

        reasons_by_history: dict[int, list[ReasonValue]] = defaultdict(list)
        for r in reason_rows:
            reasons_by_history[int(r["history_id"])].append(
                ReasonValue(
                    reason_type=ReasonType(id=int(r["reason_type_id"]), description=r["description"]),
                    comment=r["comment"] or "",
                )
            )

        history = [
            StateHistoryEntry(
                status=DeviceStatus(h["status"]),
                started_at=h["started_at"],
                ended_at=h["ended_at"],
                reasons=tuple(reasons_by_history.get(int(h["id"]), ())),
                comment=h["comment"],
                responsible=_employee_from_row(h, prefix="employee_"),
            )
            for h in history_rows
        ]
        return Device.from_history(device_id, acquired_at, serial_no, history)
