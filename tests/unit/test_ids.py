from __future__ import annotations

import string

import pytest

from common import ids
from common.ids import ReferenceIdGenerator, default_length


def _fixed_bytes(n: int) -> bytes:
    return bytes(range(n))


def test_base64_ids_are_url_safe():
    gen = ReferenceIdGenerator()
    for _ in range(200):
        ref = gen.generate(20, "base64")
        assert len(ref) == 20
        assert not set(ref) & {"+", "/", "="}
        assert set(ref) <= set(string.ascii_letters + string.digits + "-_")


def test_hex_ids_are_lowercase_hex():
    gen = ReferenceIdGenerator()
    ref = gen.generate(16, "hex")
    assert len(ref) == 16
    assert set(ref) <= set("0123456789abcdef")


def test_odd_hex_length():
    assert len(ReferenceIdGenerator().generate(7, "hex")) == 7


def test_alphanumeric_ids():
    gen = ReferenceIdGenerator()
    ref = gen.generate(18, "alphanumeric")
    assert len(ref) == 18
    assert ref.isalnum() and ref.isascii()


def test_ids_are_not_repeated():
    gen = ReferenceIdGenerator()
    seen = {gen.generate(16, "hex") for _ in range(500)}
    assert len(seen) == 500


def test_salted_ids_depend_on_server_salt():
    plain = ReferenceIdGenerator("secret-a", random_bytes=_fixed_bytes)
    other = ReferenceIdGenerator("secret-b", random_bytes=_fixed_bytes)

    unsalted = plain.generate(16, "hex")
    salted_a = plain.generate(16, "hex", use_salt=True)
    salted_b = other.generate(16, "hex", use_salt=True)

    assert unsalted == _fixed_bytes(8).hex()
    assert salted_a != unsalted
    assert salted_a != salted_b
    # Same random input and salt give the same id
    assert salted_a == plain.generate(16, "hex", use_salt=True)
    assert "secret" not in salted_a


def test_salted_ids_longer_than_one_digest():
    gen = ReferenceIdGenerator("salt", random_bytes=_fixed_bytes)
    ref = gen.generate(100, "hex", use_salt=True)
    assert len(ref) == 100
    assert set(ref) <= set("0123456789abcdef")


def test_use_salt_without_server_salt_is_plain():
    gen = ReferenceIdGenerator("", random_bytes=_fixed_bytes)
    assert gen.generate(16, "hex", use_salt=True) == gen.generate(16, "hex")


def test_invalid_arguments():
    gen = ReferenceIdGenerator()
    with pytest.raises(ValueError):
        gen.generate(0, "hex")
    with pytest.raises(ValueError):
        gen.generate(16, "base32")  # type: ignore[arg-type]


def test_default_lengths():
    assert default_length("hex") == 16
    assert default_length("alphanumeric") == 16
    assert default_length("base64") == 20


def test_insecure_fallback_warns(monkeypatch):
    monkeypatch.setattr(ids, "_secure_random_source", lambda: None)

    with pytest.warns(RuntimeWarning):
        gen = ReferenceIdGenerator()

    ref = gen.generate(16, "hex")
    assert len(ref) == 16
