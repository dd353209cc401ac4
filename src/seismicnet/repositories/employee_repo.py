from __future__ import annotations

from psycopg import Connection


class EmployeeRepository:
    def get_by_username(self, conn: Connection, username: str) -> dict | None:
        cur = conn.execute(
            """
            SELECT e.id, e.name, e.surname, e.email, e.phone, r.name AS role_name
            FROM app_user u
            JOIN employee e ON e.id = u.employee_id
            LEFT JOIN role r ON r.id = e.role_id
            WHERE u.username = %s;
            """,
            (username,),
        )
        row = cur.fetchone()
        if not row:
            return None
        cols = [d.name for d in cur.description]
        return dict(zip(cols, row))

    def list_by_role(self, conn: Connection, role_name: str) -> list[dict]:
        cur = conn.execute(
            """
            SELECT e.id, e.name, e.surname, e.email, e.phone, r.name AS role_name
            FROM employee e
            JOIN role r ON r.id = e.role_id
            WHERE lower(r.name) = lower(%s)
            ORDER BY e.surname, e.name;
            """,
            (role_name,),
        )
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]
