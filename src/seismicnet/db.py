from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

import psycopg
from psycopg import Connection

from .config import DbConfig

logger = logging.getLogger(__name__)


class DbError(Exception):
    pass


@dataclass(frozen=True)
class Db:
    cfg: DbConfig

    def connect_kwargs(self) -> dict:
        # autocommit outside of transaction(); reads never hold a snapshot open
        return {
            "host": self.cfg.host,
            "port": self.cfg.port,
            "dbname": self.cfg.name,
            "user": self.cfg.user,
            "password": self.cfg.password,
            "sslmode": self.cfg.sslmode,
            "connect_timeout": self.cfg.connect_timeout,
            "autocommit": True,
        }

    def connect(self) -> Connection:
        try:
            return psycopg.connect(**self.connect_kwargs())
        except psycopg.Error as e:
            logger.error("Connection to %s:%s/%s failed: %s", self.cfg.host, self.cfg.port, self.cfg.name, e)
            raise DbError(
                f"Cannot reach seismic network database {self.cfg.name} at {self.cfg.host}:{self.cfg.port}. "
                "Check the [db] section of the config file."
            ) from e

    @contextmanager
    def session(self) -> Iterator[Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside one BEGIN ... COMMIT block.

        Any exception escaping the block rolls the whole unit back.
        """
        with self.session() as conn:
            try:
                with conn.transaction():
                    yield conn
            except Exception:
                logger.warning("Transaction on %s rolled back", self.cfg.name)
                raise
