from __future__ import annotations

import argparse
import logging

from .cli import run_cli
from .config import AppConfig, ConfigError, load_config
from .db import Db, DbError
from .notifications import NotificationGateway
from .repositories.device_repo import DeviceRepository
from .repositories.employee_repo import EmployeeRepository
from .repositories.order_repo import OrderRepository
from .repositories.reason_repo import ReasonTypeRepository
from .repositories.status_repo import StatusRepository
from .services.gateway import PersistenceGateway


def build_gateway() -> PersistenceGateway:
    return PersistenceGateway(
        order_repo=OrderRepository(),
        device_repo=DeviceRepository(),
        employee_repo=EmployeeRepository(),
        reason_repo=ReasonTypeRepository(),
        status_repo=StatusRepository(),
    )


def configure_logging(cfg: AppConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Close seismic station inspection orders")
    parser.add_argument("--config", default="config.toml", help="path to the TOML config file")
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        configure_logging(cfg)
        db = Db(cfg.db)
        notifier = NotificationGateway.from_config(cfg.mail, cfg.dashboard)
        run_cli(db, build_gateway(), notifier)
        return 0
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    except DbError as e:
        print(f"[DB ERROR] {e}")
        return 3
    except (KeyboardInterrupt, EOFError):
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
