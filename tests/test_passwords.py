import pytest

from regdesk.config import settings
from regdesk.passwords import hash_password, is_strong, verify_password


@pytest.fixture(autouse=True)
def cheap_hashing(monkeypatch):
    monkeypatch.setattr(settings, "bcrypt_rounds", 4)


@pytest.mark.parametrize(
    "password",
    ["Str0ng!Pw", "aB3$efgh", "Correct-Horse-9"],
)
def test_is_strong_accepts_complete_passwords(password):
    assert is_strong(password)


@pytest.mark.parametrize(
    "password",
    [
        "",
        "Sh0rt!",  # too short
        "alllower1!",  # no uppercase
        "ALLUPPER1!",  # no lowercase
        "NoDigits!!",
        "NoSymbol12",
    ],
)
def test_is_strong_rejects_weak_passwords(password):
    assert not is_strong(password)


def test_hash_is_salted_and_verifies():
    first = hash_password("Str0ng!Pw")
    second = hash_password("Str0ng!Pw")
    assert first != second
    assert verify_password("Str0ng!Pw", first)
    assert verify_password("Str0ng!Pw", second)


def test_verify_rejects_other_password():
    digest = hash_password("Str0ng!Pw")
    assert not verify_password("Str0ng!Pw2", digest)
    assert not verify_password("", digest)


@pytest.mark.parametrize("digest", ["", "not-a-bcrypt-hash", "$2b$04$short"])
def test_verify_never_raises_on_malformed_digest(digest):
    assert verify_password("Str0ng!Pw", digest) is False


def test_hash_uses_configured_cost():
    assert hash_password("Str0ng!Pw").startswith("$2b$04$")
