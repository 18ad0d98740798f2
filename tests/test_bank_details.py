import pytest
from cryptography.fernet import Fernet

from app.payments.bank_details import BankDetails, BankDetailsCipher, BankDetailsUnavailable

DETAILS = BankDetails(
    account_holder="Dana Member",
    bank_name="First Example Bank",
    routing_number="021000021",
    account_number="000123456789",
)


def test_sealed_payload_hides_account_number(cipher):
    sealed = cipher.encrypt(DETAILS)
    assert "000123456789" not in sealed
    assert cipher.decrypt(sealed) == DETAILS


def test_other_key_cannot_read_details(cipher):
    sealed = cipher.encrypt(DETAILS)
    other = BankDetailsCipher(Fernet.generate_key().decode("utf-8"))
    with pytest.raises(BankDetailsUnavailable):
        other.decrypt(sealed)


def test_malformed_plaintext_is_unavailable():
    key = Fernet.generate_key()
    sealed = Fernet(key).encrypt(b'{"bank_name": "x"}').decode("utf-8")
    with pytest.raises(BankDetailsUnavailable):
        BankDetailsCipher(key.decode("utf-8")).decrypt(sealed)


def test_missing_key_is_unavailable():
    with pytest.raises(BankDetailsUnavailable):
        BankDetailsCipher("")


def test_masked_view():
    masked = DETAILS.masked()
    assert masked["account_number"] == "********6789"
    assert masked["routing_number"] == "*****0021"
