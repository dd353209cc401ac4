from datetime import datetime
from unittest.mock import MagicMock

import pytest

from fakes import FakeDb, RecordingNotifier
from seismicnet.device import DeviceStatus, StateHistoryEntry
from seismicnet.domain import OrderStatus, ReasonType, ReasonValue
from seismicnet.services.closure_service import CloseOrderWorkflow
from seismicnet.services.gateway import ConcurrentModificationError, PersistenceGateway

ACQUIRED = datetime(2023, 1, 1)
T = datetime(2024, 1, 1, 10, 0, 0)
ONLINE_SINCE_ACQUIRED = StateHistoryEntry(DeviceStatus.ONLINE, ACQUIRED)

ORDER_ROW = {
    "number": 1,
    "issued_at": datetime(2023, 12, 20, 8),
    "completed_at": datetime(2023, 12, 30, 9),
    "closed_at": None,
    "status": "COMPLETELY_PERFORMED",
    "closed_observation": None,
    "station_code": 101,
    "station_name": "Sierra Chica",
    "latitude": -31.4,
    "longitude": -64.2,
    "device_id": 7,
    "serial_no": 1007,
    "acquired_at": ACQUIRED,
    "employee_id": 1,
    "employee_name": "Juan",
    "employee_surname": "Pérez",
    "employee_email": "juan.perez@empresa.com",
    "employee_phone": None,
    "role_name": "InspectionResponsible",
}

HISTORY_ROWS = [
    {
        "id": 10,
        "status": "ONLINE",
        "started_at": ACQUIRED,
        "ended_at": datetime(2023, 6, 1),
        "comment": None,
        "employee_id": None,
        "employee_name": None,
        "employee_surname": None,
        "employee_email": None,
        "employee_phone": None,
        "role_name": None,
    },
    {
        "id": 11,
        "status": "OUT_OF_SERVICE",
        "started_at": datetime(2023, 6, 1),
        "ended_at": None,
        "comment": "storm",
        "employee_id": 1,
        "employee_name": "Juan",
        "employee_surname": "Pérez",
        "employee_email": "juan.perez@empresa.com",
        "employee_phone": None,
        "role_name": "InspectionResponsible",
    },
]


@pytest.fixture
def repos():
    order_repo = MagicMock()
    device_repo = MagicMock()
    employee_repo = MagicMock()
    reason_repo = MagicMock()
    status_repo = MagicMock()
    device_repo.list_history.return_value = HISTORY_ROWS
    device_repo.list_reasons.return_value = [
        {"history_id": 11, "reason_type_id": 2, "description": "Cable cut", "comment": None},
    ]
    return order_repo, device_repo, employee_repo, reason_repo, status_repo


@pytest.fixture
def gateway(repos):
    order_repo, device_repo, employee_repo, reason_repo, status_repo = repos
    return PersistenceGateway(
        order_repo=order_repo,
        device_repo=device_repo,
        employee_repo=employee_repo,
        reason_repo=reason_repo,
        status_repo=status_repo,
    )


def test_find_order_builds_aggregate(gateway, repos):
    order_repo, device_repo = repos[0], repos[1]
    order_repo.get_by_number.return_value = ORDER_ROW
    conn = MagicMock()

    order = gateway.find_order(conn, 1)

    assert order.number == 1
    assert order.status == OrderStatus.COMPLETELY_PERFORMED
    assert order.station.code == 101
    assert order.responsible.full_name == "Juan Pérez"
    assert order.responsible.role.name == "InspectionResponsible"

    device = order.station.device
    assert device.id == 7
    assert device.serial_no == 1007
    assert device.status == DeviceStatus.OUT_OF_SERVICE
    assert device.history[0].responsible is None
    assert device.history[1].responsible.id == 1
    assert device.history[1].reasons == (ReasonValue(ReasonType(2, "Cable cut"), ""),)
    device_repo.list_reasons.assert_called_once_with(conn, [10, 11])


def test_find_order_missing(gateway, repos):
    repos[0].get_by_number.return_value = None
    assert gateway.find_order(MagicMock(), 99) is None


def test_find_eligible_orders_delegates_to_responsible_query(gateway, repos):
    repos[0].list_completed_for_responsible.return_value = [ORDER_ROW]
    conn = MagicMock()

    orders = gateway.find_eligible_orders(conn, 1)

    assert [o.number for o in orders] == [1]
    repos[0].list_completed_for_responsible.assert_called_once_with(conn, 1)


def test_find_device(gateway, repos):
    repos[1].get.return_value = {"id": 7, "serial_no": 1007, "acquired_at": ACQUIRED}
    device = gateway.find_device(MagicMock(), 7)
    assert device.status == DeviceStatus.OUT_OF_SERVICE
    assert len(device.history) == 2


def test_catalogues_and_employees(gateway, repos):
    _, _, employee_repo, reason_repo, status_repo = repos
    reason_repo.list.return_value = [{"id": 1, "description": "Sensor damaged"}]
    status_repo.list.return_value = [{"code": "CLOSED", "display_name": "Closed"}]
    employee_repo.list_by_role.return_value = [
        {"id": 2, "name": "Ana", "surname": "García", "email": "ana@x", "phone": None, "role_name": "RepairResponsible"}
    ]
    employee_repo.get_by_username.return_value = None
    conn = MagicMock()

    assert gateway.find_all_reason_types(conn) == [ReasonType(1, "Sensor damaged")]
    assert [s.code for s in gateway.find_all_status_codes(conn)] == ["CLOSED"]
    repairers = gateway.find_repair_responsibles(conn)
    assert [e.email for e in repairers] == ["ana@x"]
    assert repairers[0].is_repair_responsible()
    employee_repo.list_by_role.assert_called_once_with(conn, "RepairResponsible")
    assert gateway.find_employee_by_username(conn, "nobody") is None


def test_update_order_passes_expected_status(gateway, repos, make_order):
    order = make_order(1)
    order.close(T, "all checked")
    repos[0].update_closure.return_value = True
    conn = MagicMock()

    gateway.update_order(conn, order)

    repos[0].update_closure.assert_called_once_with(
        conn,
        number=1,
        status="CLOSED",
        closed_at=T,
        closed_observation="all checked",
        expected_status="COMPLETELY_PERFORMED",
    )


def test_update_order_detects_concurrent_change(gateway, repos, make_order):
    order = make_order(1)
    order.close(T, "all checked")
    repos[0].update_closure.return_value = False
    with pytest.raises(ConcurrentModificationError):
        gateway.update_order(MagicMock(), order)


def test_update_device_status_uses_current_entry(gateway, repos, make_order):
    device = make_order(1).station.device
    device.send_to_repair(T, (), "broken", None)
    conn = MagicMock()

    gateway.update_device_status(conn, device)

    repos[1].update_status.assert_called_once_with(
        conn, device_id=device.id, status="OUT_OF_SERVICE", status_since=T
    )


def test_append_history_entry_closes_period_and_stores_reasons(gateway, repos, juan):
    device_repo = repos[1]
    device_repo.close_open_period.return_value = 1
    device_repo.insert_history.return_value = 55
    reasons = (
        ReasonValue(ReasonType(1, "Sensor damaged"), "cracked"),
        ReasonValue(ReasonType(2, "Cable cut"), "chewed"),
    )
    entry = StateHistoryEntry(DeviceStatus.OUT_OF_SERVICE, T, reasons=reasons, comment="broken", responsible=juan)
    conn = MagicMock()

    history_id = gateway.append_device_history_entry(conn, 7, entry, previous=ONLINE_SINCE_ACQUIRED)

    assert history_id == 55
    device_repo.close_open_period.assert_called_once_with(
        conn, device_id=7, ended_at=T, status="ONLINE", started_at=ACQUIRED
    )
    device_repo.insert_history.assert_called_once_with(
        conn, device_id=7, status="OUT_OF_SERVICE", started_at=T, comment="broken", employee_id=juan.id
    )
    assert [c.kwargs for c in device_repo.add_reason.call_args_list] == [
        {"history_id": 55, "reason_type_id": 1, "comment": "cracked"},
        {"history_id": 55, "reason_type_id": 2, "comment": "chewed"},
    ]


@pytest.mark.parametrize("closed", [0, 2])
def test_append_history_entry_requires_matching_open_period(gateway, repos, closed):
    # 0: the stored open period is not the one the device was loaded with
    repos[1].close_open_period.return_value = closed
    entry = StateHistoryEntry(DeviceStatus.OUT_OF_SERVICE, T)
    with pytest.raises(ConcurrentModificationError):
        gateway.append_device_history_entry(MagicMock(), 7, entry, previous=ONLINE_SINCE_ACQUIRED)
    repos[1].insert_history.assert_not_called()


def test_orders_on_one_station_share_their_device(gateway, repos, juan, reason_types):
    order_repo, device_repo, employee_repo, _, status_repo = repos
    order_repo.list_completed_for_responsible.return_value = [ORDER_ROW, {**ORDER_ROW, "number": 2}]
    order_repo.update_closure.return_value = True
    device_repo.list_history.return_value = [dict(HISTORY_ROWS[0], ended_at=None)]
    device_repo.list_reasons.return_value = []
    device_repo.close_open_period.return_value = 1
    device_repo.insert_history.return_value = 55
    employee_repo.list_by_role.return_value = []
    status_repo.list.return_value = [{"code": "CLOSED", "display_name": "Closed"}]
    db = FakeDb()

    def close(order, clock):
        workflow = CloseOrderWorkflow(
            db=db, gateway=gateway, notifier=RecordingNotifier(), employee=juan, clock=clock
        )
        workflow.select_order(order)
        workflow.record_observation("all checked")
        workflow.select_reasons([ReasonValue(reason_types[0], "cracked")])
        return workflow.confirm()

    first, second = gateway.find_eligible_orders(db.conn, juan.id)
    assert first.station.device is second.station.device

    close(first, lambda: T)
    result = close(second, lambda: datetime(2024, 1, 1, 11))

    assert result.history_entry is None
    assert device_repo.insert_history.call_count == 1
    assert device_repo.close_open_period.call_count == 1
    assert [c.kwargs["number"] for c in order_repo.update_closure.call_args_list] == [1, 2]
