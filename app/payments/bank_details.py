# app/payments/bank_details.py
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from cryptography.fernet import Fernet, InvalidToken

from services.redaction import mask_digits


class BankDetailsUnavailable(Exception):
    pass


@dataclass(frozen=True)
class BankDetails:
    account_holder: str
    bank_name: str
    routing_number: str
    account_number: str
    account_type: str = "checking"

    def masked(self) -> dict[str, Any]:
        return {
            "account_holder": self.account_holder,
            "bank_name": self.bank_name,
            "routing_number": mask_digits(self.routing_number),
            "account_number": mask_digits(self.account_number),
            "account_type": self.account_type,
        }


class BankDetailsCipher:
    """
    Fernet-sealed JSON blob stored in app.member_bank_details.encrypted_payload.
    The key comes from BANK_DETAILS_KEY.
    """

    def __init__(self, key: str):
        if not key:
            raise BankDetailsUnavailable("BANK_DETAILS_KEY is not configured")
        self._fernet = Fernet(key.encode("utf-8"))

    def encrypt(self, details: BankDetails) -> str:
        raw = json.dumps(
            {
                "account_holder": details.account_holder,
                "bank_name": details.bank_name,
                "routing_number": details.routing_number,
                "account_number": details.account_number,
                "account_type": details.account_type,
            }
        )
        return self._fernet.encrypt(raw.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> BankDetails:
        try:
            raw = self._fernet.decrypt(ciphertext.encode("utf-8"))
        except InvalidToken as e:
            raise BankDetailsUnavailable("stored bank details cannot be decrypted") from e

        try:
            data = json.loads(raw)
            return BankDetails(
                account_holder=data["account_holder"],
                bank_name=data["bank_name"],
                routing_number=str(data["routing_number"]),
                account_number=str(data["account_number"]),
                account_type=data.get("account_type") or "checking",
            )
        except (ValueError, KeyError, TypeError) as e:
            raise BankDetailsUnavailable("stored bank details are malformed") from e
