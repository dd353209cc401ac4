"""Out-of-service notices: mail to repair responsibles and the operations dashboard.

Both channels are fire-and-forget. A delivery failure is logged and never
propagates back into the close operation that triggered it.
"""
from __future__ import annotations

import logging
import smtplib
from datetime import datetime
from email.mime.text import MIMEText
from typing import Sequence

import requests

from .config import DashboardConfig, MailConfig
from .device import Device
from .domain import ReasonValue

logger = logging.getLogger(__name__)

SUBJECT = "Seismograph out of service"


def build_repair_notice(device: Device, recorded_at: datetime, reasons: Sequence[ReasonValue]) -> str:
    lines = [
        f"Seismograph ID: {device.id}",
        f"New status: {device.status.display_name}",
        f"Recorded at: {recorded_at.isoformat(sep=' ', timespec='seconds')}",
        "Reasons:",
    ]
    lines.extend(f"- {r.reason_type.description}: {r.comment}" for r in reasons)
    return "\n".join(lines) + "\n"


class MailNotifier:
    def __init__(self, cfg: MailConfig) -> None:
        self.cfg = cfg

    def send(self, body: str, recipients: Sequence[str]) -> bool:
        to_addresses = [r for r in recipients if r]
        if not to_addresses:
            logger.info("No mail recipients, notice not mailed")
            return False
        if not self.cfg.enabled:
            logger.info("Mail disabled, notice for %s:\n%s", ", ".join(to_addresses), body)
            return False

        email = MIMEText(body, "plain", "utf-8")
        email["Subject"] = SUBJECT
        email["From"] = self.cfg.from_address
        email["To"] = ", ".join(to_addresses)

        try:
            with smtplib.SMTP(self.cfg.smtp_host, self.cfg.smtp_port, timeout=self.cfg.timeout) as server:
                if self.cfg.use_tls:
                    server.starttls()
                if self.cfg.username and self.cfg.password:
                    server.login(self.cfg.username, self.cfg.password)
                server.sendmail(self.cfg.from_address, to_addresses, email.as_string())
        except (smtplib.SMTPException, OSError) as e:
            logger.warning("Mail to %s failed: %s", ", ".join(to_addresses), e)
            return False
        logger.info("Notice mailed to %s", ", ".join(to_addresses))
        return True


class DashboardPublisher:
    def __init__(self, cfg: DashboardConfig) -> None:
        self.cfg = cfg

    def publish(self, body: str) -> bool:
        if not self.cfg.enabled:
            logger.info("Dashboard disabled, notice:\n%s", body)
            return False
        try:
            resp = requests.post(self.cfg.url, json={"message": body}, timeout=self.cfg.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Dashboard publish to %s failed: %s", self.cfg.url, e)
            return False
        return True


class NotificationGateway:
    def __init__(self, mailer: MailNotifier, dashboard: DashboardPublisher) -> None:
        self.mailer = mailer
        self.dashboard = dashboard

    @classmethod
    def from_config(cls, mail: MailConfig, dashboard: DashboardConfig) -> NotificationGateway:
        return cls(MailNotifier(mail), DashboardPublisher(dashboard))

    def notify(self, body: str, recipients: Sequence[str]) -> None:
        self.mailer.send(body, recipients)

    def publish(self, body: str) -> None:
        self.dashboard.publish(body)
