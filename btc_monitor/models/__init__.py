"""Database models."""

from btc_monitor.models.credential import CredentialBlob

__all__ = [
    "CredentialBlob",
]
