from __future__ import annotations

from psycopg import Connection


class ReasonTypeRepository:
    def list(self, conn: Connection) -> list[dict]:
        cur = conn.execute("SELECT id, description FROM reason_type ORDER BY description;")
        cols = [d.name for d in cur.description]
        return [dict(zip(cols, row)) for row in cur.fetchall()]
