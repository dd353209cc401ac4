from __future__ import annotations

from datetime import datetime

import pytest

from fakes import FakeDb, RecordingNotifier
from seismicnet.device import Device, DeviceStatus
from seismicnet.domain import (
    INSPECTION_RESPONSIBLE,
    REPAIR_RESPONSIBLE,
    Employee,
    Order,
    OrderStatus,
    ReasonType,
    Role,
    Station,
)


@pytest.fixture
def juan():
    return Employee(1, "Juan", "Pérez", "juan.perez@empresa.com", "3511234567", Role(INSPECTION_RESPONSIBLE))


@pytest.fixture
def ana():
    return Employee(2, "Ana", "García", "ana.garcia@empresa.com", "3517654321", Role(REPAIR_RESPONSIBLE))


@pytest.fixture
def luis():
    return Employee(3, "Luis", "Martínez", "luis.martinez@empresa.com", None, Role(REPAIR_RESPONSIBLE))


@pytest.fixture
def reason_types():
    return [
        ReasonType(1, "Sensor damaged"),
        ReasonType(2, "Cable cut"),
        ReasonType(3, "Calibration lost"),
    ]


@pytest.fixture
def make_order(juan):
    def _make(
        number: int,
        *,
        status: OrderStatus = OrderStatus.COMPLETELY_PERFORMED,
        completed_at: datetime | None = datetime(2023, 12, 30, 9, 0, 0),
        responsible: Employee | None = None,
        device_status: DeviceStatus = DeviceStatus.ONLINE,
    ) -> Order:
        device = Device.provision(number, datetime(2023, 1, 1), 1000 + number, status=device_status)
        station = Station(100 + number, f"Station {number}", -31.4, -64.2, device)
        return Order(
            number=number,
            issued_at=datetime(2023, 12, 20, 8, 0, 0),
            completed_at=completed_at,
            status=status,
            station=station,
            responsible=responsible or juan,
        )

    return _make


@pytest.fixture
def fake_db():
    return FakeDb()


@pytest.fixture
def notifier():
    return RecordingNotifier()
