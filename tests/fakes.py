"""Test doubles for the database, the persistence gateway and the notifier."""
from __future__ import annotations

from collections import defaultdict
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from unittest.mock import MagicMock

from seismicnet.domain import OrderStatus, StatusCode
from seismicnet.services.gateway import ConcurrentModificationError

T = datetime(2024, 1, 1, 10, 0, 0)

STATUS_CODES = [
    StatusCode("IN_PROGRESS", "In Progress"),
    StatusCode("COMPLETELY_PERFORMED", "Completely Performed"),
    StatusCode("CLOSED", "Closed"),
]


class FakeDb:
    """Stands in for seismicnet.db.Db; counts commits and rollbacks."""

    def __init__(self) -> None:
        self.conn = MagicMock(name="conn")
        self.commits = 0
        self.rollbacks = 0
        self.sessions = 0

    @contextmanager
    def session(self):
        self.sessions += 1
        yield self.conn

    @contextmanager
    def transaction(self):
        try:
            yield self.conn
            self.commits += 1
        except Exception:
            self.rollbacks += 1
            raise


class InMemoryGateway:
    """Gateway double keeping stored order columns apart from the live objects.

    ``find_eligible_orders`` deliberately returns every known order so the
    workflow's own filtering is exercised.
    """

    def __init__(self, orders, employees, reason_types, status_codes=None) -> None:
        self.orders = {o.number: o for o in orders}
        self.stored_orders = {o.number: (o.status, o.closed_at, o.closed_observation) for o in orders}
        self.employees = list(employees)
        self.reason_types = list(reason_types)
        self.status_codes = list(STATUS_CODES if status_codes is None else status_codes)
        self.device_status = {}
        self.history = defaultdict(list)
        self.replaced = defaultdict(list)
        self.fail_on = None
        self.calls = []

    def _step(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise RuntimeError(f"{name} exploded")

    def find_eligible_orders(self, conn, employee_id):
        self._step("find_eligible_orders")
        return list(self.orders.values())

    def find_order(self, conn, number):
        order = self.orders.get(number)
        if order is None:
            return None
        status, closed_at, observation = self.stored_orders[number]
        return replace(order, status=status, closed_at=closed_at, closed_observation=observation)

    def find_all_reason_types(self, conn):
        return list(self.reason_types)

    def find_all_status_codes(self, conn):
        return list(self.status_codes)

    def find_repair_responsibles(self, conn):
        return [e for e in self.employees if e.is_repair_responsible()]

    def find_employee_by_username(self, conn, username):
        for e in self.employees:
            if e.email.split("@")[0] == username:
                return e
        return None

    def find_device(self, conn, device_id):
        for o in self.orders.values():
            if o.station.device.id == device_id:
                return o.station.device
        return None

    def update_order(self, conn, order):
        self._step("update_order")
        if self.stored_orders[order.number][0] != OrderStatus.COMPLETELY_PERFORMED:
            raise ConcurrentModificationError(f"Order #{order.number} changed in the store")
        self.stored_orders[order.number] = (order.status, order.closed_at, order.closed_observation)

    def update_device_status(self, conn, device):
        self._step("update_device_status")
        current = device.current()
        self.device_status[device.id] = (current.status, current.started_at)

    def append_device_history_entry(self, conn, device_id, entry, *, previous):
        self._step("append_device_history_entry")
        self.replaced[device_id].append((previous.status, previous.started_at))
        self.history[device_id].append(replace(entry))
        return len(self.history[device_id])


class RecordingNotifier:
    def __init__(self) -> None:
        self.mails = []
        self.published = []

    def notify(self, body, recipients):
        self.mails.append((body, list(recipients)))

    def publish(self, body):
        self.published.append(body)
