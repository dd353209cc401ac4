from __future__ import annotations

from datetime import datetime

from psycopg import Connection

_ORDER_COLUMNS = """
    o.number, o.issued_at, o.completed_at, o.closed_at, o.status, o.closed_observation,
    s.code AS station_code, s.name AS station_name, s.latitude, s.longitude,
    d.id AS device_id, d.serial_no, d.acquired_at,
    e.id AS employee_id, e.name AS employee_name, e.surname AS employee_surname,
    e.email AS employee_email, e.phone AS employee_phone, r.name AS role_name
"""

_ORDER_JOINS = """
    FROM inspection_order o
    JOIN station s ON s.id = o.station_id
    JOIN device d ON d.id = s.device_id
    JOIN employee e ON e.id = o.responsible_id
    LEFT JOIN role r ON r.id = e.role_id
"""


class OrderRepository:
    def list_completed_for_responsible(self, conn: Connection, employee_id: int) -> list[dict]:
        cur = conn.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
            {_ORDER_JOINS}
            WHERE o.responsible_id = %s AND o.status = 'COMPLETELY_PERFORMED'
            ORDER BY o.completed_at ASC, o.number ASC;
            """,
            (employee_id,),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]

    def get_by_number(self, conn: Connection, number: int) -> dict | None:
        cur = conn.execute(
            f"""
            SELECT {_ORDER_COLUMNS}
            {_ORDER_JOINS}
            WHERE o.number = %s;
            """,
            (number,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return dict(zip(cols, row))

    def update_closure(
        self,
        conn: Connection,
        *,
        number: int,
        status: str,
        closed_at: datetime | None,
        closed_observation: str | None,
        expected_status: str,
    ) -> bool:
        cur = conn.execute(
            """
            UPDATE inspection_order
            SET status = %s, closed_at = %s, closed_observation = %s
            WHERE number = %s AND status = %s;
            """,
            (status, closed_at, closed_observation, number, expected_status),
        )
        return cur.rowcount == 1
