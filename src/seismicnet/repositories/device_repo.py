from __future__ import annotations

from datetime import datetime

from psycopg import Connection


class DeviceRepository:
    def get(self, conn: Connection, device_id: int) -> dict | None:
        cur = conn.execute(
            """
            SELECT id, serial_no, acquired_at, status, status_since
            FROM device WHERE id = %s;
            """,
            (device_id,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return dict(zip(cols, row))

    def list_history(self, conn: Connection, device_id: int) -> list[dict]:
        cur = conn.execute(
            """
            SELECT h.id, h.status, h.started_at, h.ended_at, h.comment,
                   e.id AS employee_id, e.name AS employee_name, e.surname AS employee_surname,
                   e.email AS employee_email, e.phone AS employee_phone, r.name AS role_name
            FROM device_state_history h
            LEFT JOIN employee e ON e.id = h.employee_id
            LEFT JOIN role r ON r.id = e.role_id
            WHERE h.device_id = %s
            ORDER BY h.started_at ASC, h.id ASC;
            """,
            (device_id,),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]

    def list_reasons(self, conn: Connection, history_ids: list[int]) -> list[dict]:
        if not history_ids:
            return []
        cur = conn.execute(
            """
            SELECT sr.history_id, rt.id AS reason_type_id, rt.description, sr.comment
            FROM device_state_reason sr
            JOIN reason_type rt ON rt.id = sr.reason_type_id
            WHERE sr.history_id = ANY(%s)
            ORDER BY sr.id ASC;
            """,
            (history_ids,),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]

    def update_status(self, conn: Connection, *, device_id: int, status: str, status_since: datetime) -> None:
        cur = conn.execute(
            "UPDATE device SET status = %s, status_since = %s WHERE id = %s;",
            (status, status_since, device_id),
        )
        if cur.rowcount != 1:
            raise ValueError("Unknown device_id=%s" % device_id)

    def close_open_period(
        self,
        conn: Connection,
        *,
        device_id: int,
        ended_at: datetime,
        status: str,
        started_at: datetime,
    ) -> int:
        cur = conn.execute(
            """
            UPDATE device_state_history
            SET ended_at = %s
            WHERE device_id = %s AND ended_at IS NULL AND status = %s AND started_at = %s;
            """,
            (ended_at, device_id, status, started_at),
        )
        return cur.rowcount

    def insert_history(
        self,
        conn: Connection,
        *,
        device_id: int,
        status: str,
        started_at: datetime,
        comment: str | None,
        employee_id: int | None,
    ) -> int:
        cur = conn.execute(
            """
            INSERT INTO device_state_history(device_id, status, started_at, comment, employee_id)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id;
            """,
            (device_id, status, started_at, comment, employee_id),
        )
        return int(cur.fetchone()[0])

    def add_reason(self, conn: Connection, *, history_id: int, reason_type_id: int, comment: str | None) -> int:
        cur = conn.execute(
            """
            INSERT INTO device_state_reason(history_id, reason_type_id, comment)
            VALUES (%s, %s, %s)
            RETURNING id;
            """,
            (history_id, reason_type_id, comment),
        )
        return int(cur.fetchone()[0])
