from __future__ import annotations

from psycopg import Connection


def closed_orders(conn: Connection, limit: int = 20) -> list[dict]:
    # order + station + device + responsible, newest closure first
    cur = conn.execute(
        """
        SELECT
          o.number,
          o.closed_at,
          o.closed_observation,
          s.name AS station_name,
          d.serial_no,
          e.name || ' ' || e.surname AS responsible
        FROM inspection_order o
        JOIN station s ON s.id = o.station_id
        JOIN device d ON d.id = s.device_id
        JOIN employee e ON e.id = o.responsible_id
        WHERE o.status = 'CLOSED'
        ORDER BY o.closed_at DESC
        LIMIT %s;
        """,
        (limit,),
    )
    cols = [d.name for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]


def device_overview(conn: Connection) -> list[dict]:
    cur = conn.execute(
        """
        SELECT
          d.id AS device_id,
          d.serial_no,
          d.status,
          d.status_since,
          s.code AS station_code,
          s.name AS station_name
        FROM device d
        LEFT JOIN station s ON s.device_id = d.id
        ORDER BY d.id;
        """
    )
    cols = [d.name for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]


def device_history(conn: Connection, device_id: int) -> list[dict]:
    cur = conn.execute(
        """
        SELECT
          h.id,
          h.status,
          h.started_at,
          h.ended_at,
          h.comment,
          e.name || ' ' || e.surname AS responsible,
          COALESCE(string_agg(rt.description || ': ' || COALESCE(sr.comment, ''), '; ' ORDER BY sr.id), '') AS reasons
        FROM device_state_history h
        LEFT JOIN employee e ON e.id = h.employee_id
        LEFT JOIN device_state_reason sr ON sr.history_id = h.id
        LEFT JOIN reason_type rt ON rt.id = sr.reason_type_id
        WHERE h.device_id = %s
        GROUP BY h.id, e.name, e.surname
        ORDER BY h.started_at DESC, h.id DESC;
        """,
        (device_id,),
    )
    cols = [d.name for d in cur.description]
    return [dict(zip(cols, row)) for row in cur.fetchall()]
