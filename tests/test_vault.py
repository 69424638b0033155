import base64
import os
import string

import pytest

from catalog_hub.errors import FormatError, IntegrityError, VaultConfigError, VaultError
from catalog_hub.security.vault import CredentialVault, generate_key, load_key


def _flip_first_byte(part: str) -> str:
    raw = bytearray(base64.b64decode(part))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode("ascii")


def test_round_trip(vault):
    secret = "cs_0123456789abcdef0123456789abcdef01234567"
    compact = vault.encrypt(secret)
    assert secret not in compact
    assert vault.decrypt(compact) == secret


def test_compact_form_and_fresh_nonce(vault):
    a = vault.encrypt("ck_same")
    b = vault.encrypt("ck_same")
    assert a != b
    nonce, tag, ct = a.split(":")
    assert len(base64.b64decode(nonce)) == 16
    assert len(base64.b64decode(tag)) == 16
    assert len(base64.b64decode(ct)) == len("ck_same")


def test_unicode_and_empty_plaintext(vault):
    assert vault.decrypt(vault.encrypt("clé-secrète")) == "clé-secrète"
    assert vault.decrypt(vault.encrypt("")) == ""


def test_tampered_ciphertext_is_rejected(vault):
    nonce, tag, ct = vault.encrypt("ck_live_key").split(":")
    with pytest.raises(IntegrityError):
        vault.decrypt(":".join((nonce, tag, _flip_first_byte(ct))))


def test_tampered_tag_is_rejected(vault):
    nonce, tag, ct = vault.encrypt("").split(":")
    with pytest.raises(IntegrityError):
        vault.decrypt(":".join((nonce, _flip_first_byte(tag), ct)))


def test_wrong_key_is_rejected(vault):
    compact = vault.encrypt("ck_live_key")
    other = CredentialVault(os.urandom(32))
    with pytest.raises(IntegrityError):
        other.decrypt(compact)


@pytest.mark.parametrize("bad", ["", "abc", "a:b", "a:b:c:d", "!!!:AAAA:AAAA"])
def test_malformed_input_is_format_error(vault, bad):
    with pytest.raises(FormatError):
        vault.decrypt(bad)


def test_wrong_nonce_length_is_format_error(vault):
    _, tag, ct = vault.encrypt("x").split(":")
    short = base64.b64encode(b"\x00" * 12).decode()
    with pytest.raises(FormatError):
        vault.decrypt(":".join((short, tag, ct)))


def test_load_key_accepts_prefix_and_plain():
    raw = base64.b64encode(b"k" * 32).decode()
    assert load_key(raw) == b"k" * 32
    assert load_key("base64:" + raw) == b"k" * 32


@pytest.mark.parametrize("raw", [None, "", "   ", "not base64 at all", base64.b64encode(b"k" * 16).decode()])
def test_load_key_rejects_bad_keys(raw):
    with pytest.raises(VaultConfigError):
        load_key(raw)


def test_generated_key_is_loadable():
    key = generate_key()
    assert key.startswith("base64:")
    v = CredentialVault(load_key(key))
    assert v.decrypt(v.encrypt("hello")) == "hello"


def test_any_single_character_change_is_rejected(vault):
    compact = vault.encrypt("ck_live_key")
    alphabet = string.ascii_letters + string.digits + "+/"
    for i, ch in enumerate(compact):
        if ch in ":=":
            continue
        for other in alphabet:
            if other == ch:
                continue
            tampered = compact[:i] + other + compact[i + 1:]
            with pytest.raises(VaultError):
                vault.decrypt(tampered)


def test_non_canonical_padding_bits_are_format_error(vault):
    nonce, tag, ct = vault.encrypt("ck_live_key").split(":")
    # 16 bytes encode to 22 chars + "=="; the last char carries 4 unused bits
    last = nonce[21]
    alphabet = string.ascii_uppercase + string.ascii_lowercase + string.digits + "+/"
    sibling = alphabet[alphabet.index(last) ^ 0x01]
    with pytest.raises(FormatError):
        vault.decrypt(":".join((nonce[:21] + sibling + nonce[22:], tag, ct)))
