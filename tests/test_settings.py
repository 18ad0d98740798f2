from __future__ import annotations

from datetime import date

import pytest
from pydantic import ValidationError

from settings import Settings


def test_defaults(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://example/db")
    s = Settings(_env_file=None)
    assert s.PROGRAM_LAUNCH_DATE == date(2024, 1, 1)
    assert s.REVENUE_THRESHOLD_CENTS == 10_000_000
    assert s.PAYOUT_AMOUNT_CENTS == 10_000_000
    assert s.RETENTION_FEE_CENTS == 30_000
    assert s.TAX_WITHHOLDING_RATE == "0.24"
    assert s.REMOVAL_DELAY_MONTHS == 12
    assert s.approver_roles() == frozenset({"admin", "finance_manager"})


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://example/db")
    monkeypatch.setenv("PROGRAM_LAUNCH_DATE", "2023-07-01")
    monkeypatch.setenv("APPROVER_ROLES", " Admin , treasury ,")
    monkeypatch.setenv("APPROVALS_AT_OR_ABOVE_THRESHOLD", "3")
    s = Settings(_env_file=None)
    assert s.PROGRAM_LAUNCH_DATE == date(2023, 7, 1)
    assert s.approver_roles() == frozenset({"admin", "treasury"})
    assert s.APPROVALS_AT_OR_ABOVE_THRESHOLD == 3


def test_database_url_is_required(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_payout_amount_must_be_positive(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://example/db")
    monkeypatch.setenv("PAYOUT_AMOUNT_CENTS", "0")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
