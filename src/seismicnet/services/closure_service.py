from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence

from psycopg import Connection

from ..db import Db
from ..device import HistoryError, StateHistoryEntry
from ..domain import Employee, IllegalTransition, Order, OrderStatus, ReasonType, ReasonValue
from ..notifications import NotificationGateway, build_repair_notice
from .gateway import PersistenceError, PersistenceGateway

logger = logging.getLogger(__name__)


class ValidationError(Exception):
    pass


class WorkflowStepError(Exception):
    pass


class WorkflowStep(str, Enum):
    IDLE = "idle"
    ORDER_CHOSEN = "order_chosen"
    OBSERVATION_TAKEN = "observation_taken"
    REASONS_TAKEN = "reasons_taken"
    CONFIRMED = "confirmed"


_STEP_RANK = {step: i for i, step in enumerate(WorkflowStep)}


@dataclass(frozen=True)
class ClosureResult:
    order: Order
    history_entry: Optional[StateHistoryEntry]
    notice: str
    recipients: tuple[str, ...]


class CloseOrderWorkflow:
    """Stepwise close of an inspection order for one logged employee.

    The caller drives one field at a time: pick an order, record the closing
    observation, pick the out-of-service reasons, then confirm. Nothing
    touches the order or its device before ``confirm``; ``confirm`` closes
    the order, sends the station's seismograph to repair and stores both in
    one transaction, undoing the in-memory changes if the store rejects them.
    """

    def __init__(
        self,
        *,
        db: Db,
        gateway: PersistenceGateway,
        notifier: NotificationGateway,
        employee: Employee,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.employee = employee
        self.clock = clock

        self.step = WorkflowStep.IDLE
        self.order: Optional[Order] = None
        self.observation: Optional[str] = None
        self.reasons: tuple[ReasonValue, ...] = ()

    def list_eligible_orders(self) -> list[Order]:
        with self.db.session() as conn:
            orders = self.gateway.find_eligible_orders(conn, self.employee.id)
        eligible = [
            o
            for o in orders
            if o.belongs_to(self.employee) and o.is_completely_performed() and not o.is_closed()
        ]
        # ties on completion time fall back to the order number
        eligible.sort(key=lambda o: (o.completed_at is None, o.completed_at or datetime.min, o.number))
        logger.debug("%d eligible orders for %s", len(eligible), self.employee.full_name)
        return eligible

    def available_reason_types(self) -> list[ReasonType]:
        with self.db.session() as conn:
            return self.gateway.find_all_reason_types(conn)

    def select_order(self, order: Order) -> None:
        self._require(WorkflowStep.IDLE)
        self.order = order
        self.observation = None
        self.reasons = ()
        self.step = WorkflowStep.ORDER_CHOSEN
        logger.debug("Order #%s selected", order.number)

    def record_observation(self, text: str) -> None:
        self._require(WorkflowStep.ORDER_CHOSEN)
        self.observation = text
        self.reasons = ()
        self.step = WorkflowStep.OBSERVATION_TAKEN

    def select_reasons(self, reasons: Sequence[ReasonValue]) -> None:
        self._require(WorkflowStep.OBSERVATION_TAKEN)
        self.reasons = tuple(reasons)
        self.step = WorkflowStep.REASONS_TAKEN

    def cancel(self) -> None:
        self._require(WorkflowStep.IDLE)
        self.order = None
        self.observation = None
        self.reasons = ()
        self.step = WorkflowStep.IDLE
        logger.debug("Close workflow cancelled by %s", self.employee.full_name)

    def confirm(self) -> ClosureResult:
        self._require(WorkflowStep.IDLE)
        self._validate()

        order = self.order
        device = order.station.device
        observation = self.observation
        reasons = self.reasons
        now = self.clock()

        order_snap = order.snapshot()
        device_snap = device.snapshot()
        try:
            with self.db.transaction() as conn:
                closed_status = self._resolve_closed_status(conn)
                recipients = tuple(
                    e.email for e in self.gateway.find_repair_responsibles(conn) if e.is_repair_responsible()
                )

                previous = device.current()
                order.close(now, observation, closed_status)
                changed = order.send_device_to_repair(now, reasons, observation, self.employee)

                self.gateway.update_order(conn, order)
                if changed:
                    self.gateway.update_device_status(conn, device)
                    self.gateway.append_device_history_entry(
                        conn, device.id, device.current(), previous=previous
                    )
        except Exception as e:
            order.restore(order_snap)
            device.restore(device_snap)
            logger.warning("Closing order #%s failed, in-memory changes reverted: %s", order.number, e)
            if isinstance(e, (PersistenceError, IllegalTransition, HistoryError)):
                raise
            raise PersistenceError(f"Order #{order.number} could not be stored: {e}") from e

        logger.info(
            "Order #%s closed by %s, device %s now %s",
            order.number,
            self.employee.full_name,
            device.id,
            device.status.value,
        )

        self.step = WorkflowStep.CONFIRMED

        notice = build_repair_notice(device, now, reasons)
        try:
            self.notifier.notify(notice, recipients)
            self.notifier.publish(notice)
        except Exception:
            # the close is already committed
            logger.exception("Notifying the close of order #%s failed", order.number)

        return ClosureResult(
            order=order,
            history_entry=device.current() if changed else None,
            notice=notice,
            recipients=recipients,
        )

    def _require(self, minimum: WorkflowStep) -> None:
        if self.step == WorkflowStep.CONFIRMED:
            raise WorkflowStepError("The order has already been closed in this workflow.")
        if _STEP_RANK[self.step] < _STEP_RANK[minimum]:
            raise WorkflowStepError(f"Step requires {minimum.value}, workflow is at {self.step.value}.")

    def _validate(self) -> None:
        if self.order is None:
            raise ValidationError("An inspection order must be selected.")
        if self.observation is None or not self.observation.strip():
            raise ValidationError("A closing observation is required.")
        if not self.reasons:
            raise ValidationError("At least one out-of-service reason is required.")

    def _resolve_closed_status(self, conn: Connection) -> OrderStatus:
        codes = self.gateway.find_all_status_codes(conn)
        if not any(c.code == OrderStatus.CLOSED.value for c in codes):
            raise PersistenceError(f"Status catalogue has no {OrderStatus.CLOSED.value} entry.")
        return OrderStatus.CLOSED
