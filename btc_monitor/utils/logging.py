"""Logging setup and redaction helpers."""

import logging
import sys

from btc_monitor.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once for the service and the CLI."""
    root = logging.getLogger()
    root.setLevel((level or settings.log_level).upper())
    if not any(getattr(h, "_btc_monitor", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._btc_monitor = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def mask_email(email: str | None) -> str:
    """Redact an email for log output: ``alice@example.com`` -> ``al***@example.com``."""
    if not email:
        return "<none>"
    local, sep, domain = email.partition("@")
    if not sep:
        return mask_secret(email, visible=2)
    return f"{local[:2]}***@{domain}"


def mask_secret(value: str | None, visible: int = 4) -> str:
    """Keep the first ``visible`` characters of a secret and star the rest."""
    if not value or len(value) <= visible:
        return "*" * (len(value) if value else 8)
    return value[:visible] + "*" * (len(value) - visible)
