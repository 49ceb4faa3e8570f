"""Tests for log redaction helpers."""

from btc_monitor.utils.logging import mask_email, mask_secret


def test_mask_email_keeps_domain_only():
    assert mask_email("alice@example.com") == "al***@example.com"
    assert mask_email(None) == "<none>"
    assert "alice" not in mask_email("alice@example.com")


def test_mask_email_without_at_sign():
    assert mask_email("alicebob") == "al******"


def test_mask_secret():
    assert mask_secret("abcdefgh") == "abcd****"
    assert mask_secret("abc") == "***"
    assert mask_secret("") == "********"
