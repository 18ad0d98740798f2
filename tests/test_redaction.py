import logging

from services.redaction import mask_digits, redact_dict, redact_text


def test_redact_text_masks_email_account_numbers_and_tokens():
    text = "member dana@example.com account 000123456789"
    redacted = redact_text(text)
    assert "dana@example.com" not in redacted
    assert "000123456789" not in redacted
    assert redacted.endswith("********6789")
    assert redact_text("Authorization: Bearer abcdef") == "[REDACTED]"


def test_redact_text_keeps_uuids_and_dates():
    text = "payout 5c1e8d53-5a1c-4c4e-8d0f-0a1b2c3d4e01 on 2025-01-15"
    assert redact_text(text) == text


def test_redact_dict_masks_sensitive_keys():
    payload = {
        "email": "dana@example.com",
        "access_token": "abc",
        "encrypted_payload": "gAAAA...",
        "account_number": "000123456789",
        "routing_number": "021000021",
        "line1": "12 Elm Street",
        "nested": {"api_key": "k", "amount_cents": 10_000_000},
    }
    redacted = redact_dict(payload)
    assert redacted["email"] == "d***@example.com"
    assert redacted["access_token"] == "[REDACTED]"
    assert redacted["encrypted_payload"] == "[REDACTED]"
    assert redacted["account_number"] == "********6789"
    assert redacted["routing_number"] == "*****0021"
    assert redacted["line1"] == "***"
    assert redacted["nested"] == {"api_key": "[REDACTED]", "amount_cents": 10_000_000}


def test_mask_digits_short_values():
    assert mask_digits("123") == "****"


def test_log_line_uses_redaction_helper(caplog):
    logger = logging.getLogger("redaction-test")
    caplog.set_level(logging.INFO)
    logger.info("payload=%s", redact_text("email dana@example.com account 000123456789"))
    assert "dana@example.com" not in caplog.text
    assert "000123456789" not in caplog.text
