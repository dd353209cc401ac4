from __future__ import annotations

from psycopg import Connection


class StatusRepository:
    def list(self, conn: Connection) -> list[dict]:
        cur = conn.execute("SELECT code, display_name FROM order_status ORDER BY code;")
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]
