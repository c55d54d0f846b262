"""Env var encryption: key parsing and tolerant decryption for display."""
from __future__ import annotations

import pytest

from backend.projects.crypto import KEY_LEN, EnvVarCipher, generate_key, parse_key


def test_parse_key_accepts_64_hex_chars():
    assert parse_key(" " + "0f" * KEY_LEN + "\n") == bytes.fromhex("0f" * KEY_LEN)


@pytest.mark.parametrize("raw", [None, "", "zz" * KEY_LEN, "ab" * (KEY_LEN - 1)])
def test_parse_key_rejects_malformed_keys(raw):
    with pytest.raises(ValueError):
        parse_key(raw)


def test_ciphertext_is_randomized_and_decrypts():
    cipher = EnvVarCipher(generate_key())
    first, second = cipher.encrypt("sk_live_123"), cipher.encrypt("sk_live_123")
    assert first != second
    assert "sk_live_123" not in first
    assert cipher.decrypt(first) == cipher.decrypt(second) == "sk_live_123"


@pytest.mark.parametrize("token", [None, "", "not base64!", "AAAA"])
def test_decrypt_or_none_tolerates_garbage(token):
    assert EnvVarCipher(generate_key()).decrypt_or_none(token) is None


def test_decrypt_or_none_with_a_rotated_key():
    token = EnvVarCipher(generate_key()).encrypt("value")
    assert EnvVarCipher(generate_key()).decrypt_or_none(token) is None
