from __future__ import annotations

import tomllib
from dataclasses import dataclass
from pathlib import Path


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DbConfig:
    host: str
    port: int
    name: str
    user: str
    password: str
    sslmode: str = "disable"
    connect_timeout: int = 10


@dataclass(frozen=True)
class MailConfig:
    smtp_host: str = ""
    smtp_port: int = 25
    from_address: str = "seismicnet@localhost"
    use_tls: bool = False
    username: str | None = None
    password: str | None = None
    timeout: float = 10.0

    @property
    def enabled(self) -> bool:
        return bool(self.smtp_host)


@dataclass(frozen=True)
class DashboardConfig:
    url: str = ""
    timeout: float = 5.0

    @property
    def enabled(self) -> bool:
        return bool(self.url)


@dataclass(frozen=True)
class AppConfig:
    name: str
    log_level: str
    db: DbConfig
    mail: MailConfig
    dashboard: DashboardConfig


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p.resolve()}")

    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except Exception as e:
        raise ConfigError(f"Failed to read config TOML: {e}") from e

    try:
        app = data["app"]
        db = data["db"]
        mail = data.get("mail", {})
        dashboard = data.get("dashboard", {})
        return AppConfig(
            name=str(app.get("name", "SeismicNet")),
            log_level=str(app.get("log_level", "INFO")).upper(),
            db=DbConfig(
                host=str(db["host"]),
                port=int(db.get("port", 5432)),
                name=str(db["name"]),
                user=str(db["user"]),
                password=str(db["password"]),
                sslmode=str(db.get("sslmode", "disable")),
                connect_timeout=int(db.get("connect_timeout", 10)),
            ),
            mail=MailConfig(
                smtp_host=str(mail.get("smtp_host", "")),
                smtp_port=int(mail.get("smtp_port", 25)),
                from_address=str(mail.get("from_address", "seismicnet@localhost")),
                use_tls=bool(mail.get("use_tls", False)),
                username=mail.get("username") or None,
                password=mail.get("password") or None,
                timeout=float(mail.get("timeout", 10.0)),
            ),
            dashboard=DashboardConfig(
                url=str(dashboard.get("url", "")),
                timeout=float(dashboard.get("timeout", 5.0)),
            ),
        )
    except KeyError as e:
        raise ConfigError(f"Missing config key: {e}") from e
    except Exception as e:
        raise ConfigError(f"Invalid config values: {e}") from e
