from __future__ import annotations

import logging

from .db import Db
from .device import HistoryError
from .domain import IllegalTransition, ReasonValue, Session
from .notifications import NotificationGateway
from .reports import closed_orders, device_history, device_overview
from .services.closure_service import CloseOrderWorkflow, ValidationError, WorkflowStepError
from .services.gateway import PersistenceError, PersistenceGateway

logger = logging.getLogger(__name__)


def _prompt(msg: str) -> str:
    return input(msg).strip()


def _pick(items: list, choice: str):
    n = int(choice)
    if not 1 <= n <= len(items):
        raise IndexError(f"Choose a number between 1 and {len(items)}.")
    return items[n - 1]


def _login(db: Db, gateway: PersistenceGateway) -> Session | None:
    username = _prompt("username: ")
    if not username:
        return None
    with db.session() as conn:
        employee = gateway.find_employee_by_username(conn, username)
    if employee is None:
        print(f"Unknown user: {username}")
        return None
    logger.info("User %s logged in as %s", username, employee.full_name)
    return Session(username=username, employee=employee)


def _collect_reasons(workflow: CloseOrderWorkflow) -> list[ReasonValue]:
    reason_types = workflow.available_reason_types()
    print("\nOut-of-service reasons:")
    for i, rt in enumerate(reason_types, start=1):
        print(f"{i}) {rt.description}")
    reasons: list[ReasonValue] = []
    while True:
        pick = _prompt("add reason # (blank to finish): ")
        if not pick:
            return reasons
        rt = _pick(reason_types, pick)
        comment = _prompt(f"  comment for '{rt.description}': ")
        reasons.append(ReasonValue(reason_type=rt, comment=comment))


def _close_order(workflow: CloseOrderWorkflow) -> None:
    orders = workflow.list_eligible_orders()
    if not orders:
        print("No completely performed orders waiting to be closed.")
        return

    print("\nOrders ready to close:")
    for i, o in enumerate(orders, start=1):
        print(
            f"{i}) order#{o.number} station={o.station.name} "
            f"completed={o.completed_at} device={o.station.device.id} status={o.station.device.status.display_name}"
        )
    pick = _prompt("order (blank to cancel): ")
    if not pick:
        return
    workflow.select_order(_pick(orders, pick))

    workflow.record_observation(_prompt("closing observation: "))
    workflow.select_reasons(_collect_reasons(workflow))

    while True:
        answer = _prompt("Confirm close? (y/n): ").lower()
        if answer != "y":
            workflow.cancel()
            print("Close cancelled.")
            return
        try:
            result = workflow.confirm()
        except ValidationError as e:
            print(f"[INPUT ERROR] {e}")
            if _prompt("Edit input? (y/n): ").lower() != "y":
                workflow.cancel()
                print("Close cancelled.")
                return
            workflow.record_observation(_prompt("closing observation: "))
            workflow.select_reasons(_collect_reasons(workflow))
            continue
        print(f"Order #{result.order.number} closed at {result.order.closed_at}.")
        print(result.notice)
        return


def run_cli(db: Db, gateway: PersistenceGateway, notifier: NotificationGateway) -> None:
    session = None
    while session is None:
        session = _login(db, gateway)

    while True:
        print(f"\n=== Seismic Network ({session.employee.full_name}) ===")
        print("1) Close inspection order")
        print("2) Closed orders")
        print("3) Seismograph status")
        print("4) Seismograph history")
        print("0) Exit")

        choice = _prompt("> ")
        try:
            if choice == "0":
                session.close()
                return

            elif choice == "1":
                workflow = CloseOrderWorkflow(
                    db=db,
                    gateway=gateway,
                    notifier=notifier,
                    employee=session.employee,
                )
                _close_order(workflow)

            elif choice == "2":
                with db.session() as conn:
                    rows = closed_orders(conn, limit=20)
                if not rows:
                    print("(no closed orders)")
                for r in rows:
                    print(
                        f'order#{r["number"]} station={r["station_name"]} serial={r["serial_no"]} '
                        f'responsible={r["responsible"]} closed={r["closed_at"]} observation={r["closed_observation"]}'
                    )

            elif choice == "3":
                with db.session() as conn:
                    rows = device_overview(conn)
                for r in rows:
                    print(
                        f'device#{r["device_id"]} serial={r["serial_no"]} station={r["station_name"]} '
                        f'status={r["status"]} since={r["status_since"]}'
                    )

            elif choice == "4":
                device_id = int(_prompt("device_id: "))
                with db.session() as conn:
                    rows = device_history(conn, device_id)
                for r in rows:
                    print(
                        f'{r["started_at"]} -> {r["ended_at"] or "now"} {r["status"]} '
                        f'by={r["responsible"] or "-"} comment={r["comment"] or ""} reasons={r["reasons"]}'
                    )

            else:
                print("Unknown choice.")

        except (ValidationError, WorkflowStepError) as e:
            print(f"[INPUT ERROR] {e}")
        except (IndexError, ValueError) as e:
            print(f"[VALUE ERROR] {e}")
        except (IllegalTransition, HistoryError) as e:
            print(f"[STATE ERROR] {e}")
        except PersistenceError as e:
            print(f"[DB ERROR] {e}")
        except Exception as e:
            logger.exception("Unexpected error")
            print(f"[ERROR] {type(e).__name__}: {e}")
