"""
Tests for the v4 token codec and claim rules.
"""

from datetime import timedelta

import pytest

from clientauth.errors import (
    AudienceMismatch,
    DecryptionFailed,
    Expired,
    InvalidSignature,
    MalformedToken,
    SubjectMismatch,
)
from clientauth.keys import AsymmetricSecretKey, SymmetricKey
from clientauth.rules import PURPOSE_PUBLIC, NotExpired, TokenParser, decode_local, decode_signed
from clientauth.v4_tokens import (
    b64url_decode,
    b64url_encode,
    decrypt_token_v4,
    encode_local,
    encode_signed,
    encrypt_token_v4,
    now_utc,
    pae,
    sign_token_v4,
    verify_token_v4,
    xchacha20_xor,
)


def _window(minutes=5):
    now = now_utc()
    return {"issued_at": now, "not_before": now, "expiration": now + timedelta(minutes=minutes)}


# --- Encoding primitives ------------------------------------------------------------------------


def test_pae_known_values():
    assert pae() == b"\x00" * 8
    assert pae(b"") == b"\x01" + b"\x00" * 7 + b"\x00" * 8
    assert pae(b"test") == (
        b"\x01\x00\x00\x00\x00\x00\x00\x00"
        b"\x04\x00\x00\x00\x00\x00\x00\x00"
        b"test"
    )


def test_xchacha20_requires_extended_nonce():
    key = bytes(range(32))
    for nonce in (b"\x00" * 8, b"\x00" * 12):
        with pytest.raises(ValueError):
            xchacha20_xor(b"data", nonce, key)
    assert len(xchacha20_xor(b"data", b"\x00" * 24, key)) == 4


def test_b64url_is_unpadded():
    assert b64url_encode(b"\xff\xfe") == "__4"
    assert b64url_decode("__4") == b"\xff\xfe"
    with pytest.raises(MalformedToken):
        b64url_decode("__4=")


@pytest.mark.parametrize("segment", ["__4!", "_\n_4", "__5", "_+4", "__4~"])
def test_b64url_decode_is_strict(segment):
    with pytest.raises(MalformedToken):
        b64url_decode(segment)


# --- v4.public ----------------------------------------------------------------------------------


def test_public_token_verifies():
    sk = AsymmetricSecretKey.generate()
    token = sign_token_v4(sk, {"data": "this is a signed message"})

    assert token.startswith("v4.public.")
    assert verify_token_v4(sk.public_key(), token) == {"data": "this is a signed message"}


def test_public_token_with_foreign_characters_is_rejected():
    sk = AsymmetricSecretKey.generate()
    token = encode_signed({"a": 1}, sk, **_window())

    for changed in (token[:20] + "!!" + token[20:], token + "~", token + "\n"):
        with pytest.raises(MalformedToken):
            decode_signed(changed, sk.public_key())


def test_public_token_tampered_payload():
    sk = AsymmetricSecretKey.generate()
    good = sign_token_v4(sk, {"sub": "alice"})
    forged = sign_token_v4(AsymmetricSecretKey.generate(), {"sub": "mallory"})

    # graft the forged payload onto the good signature
    good_body = b64url_decode(good[len("v4.public."):])
    forged_body = b64url_decode(forged[len("v4.public."):])
    spliced = "v4.public." + b64url_encode(forged_body[:-64] + good_body[-64:])

    with pytest.raises(InvalidSignature):
        verify_token_v4(sk.public_key(), spliced)


def test_public_token_footer():
    sk = AsymmetricSecretKey.generate()
    token = sign_token_v4(sk, {"a": 1}, footer=b'{"kid":"k1"}')

    assert verify_token_v4(sk.public_key(), token, footer=b'{"kid":"k1"}') == {"a": 1}
    with pytest.raises(MalformedToken):
        verify_token_v4(sk.public_key(), token, footer=b'{"kid":"k2"}')


def test_public_token_implicit_assertion():
    sk = AsymmetricSecretKey.generate()
    token = sign_token_v4(sk, {"a": 1}, implicit=b"bound-context")

    assert verify_token_v4(sk.public_key(), token, implicit=b"bound-context") == {"a": 1}
    with pytest.raises(InvalidSignature):
        verify_token_v4(sk.public_key(), token)


@pytest.mark.parametrize(
    "token",
    [
        "v3.public.AAAA",
        "v4.local.AAAA",
        "v4.public.",
        "v4.public.AAAA",
        "v4.public.a.b.c",
    ],
)
def test_public_token_malformed(token):
    sk = AsymmetricSecretKey.generate()
    with pytest.raises(MalformedToken):
        verify_token_v4(sk.public_key(), token)


# --- v4.local -----------------------------------------------------------------------------------


def test_local_token_decrypts():
    key = SymmetricKey.generate()
    token = encrypt_token_v4(key, {"data": "this is a secret message"})

    assert token.startswith("v4.local.")
    assert "secret message" not in token
    assert decrypt_token_v4(key, token) == {"data": "this is a secret message"}


def test_local_token_nonce_makes_tokens_distinct():
    key = SymmetricKey.generate()
    assert encrypt_token_v4(key, {"a": 1}) != encrypt_token_v4(key, {"a": 1})


def test_local_token_wrong_key():
    token = encrypt_token_v4(SymmetricKey.generate(), {"a": 1})
    with pytest.raises(DecryptionFailed):
        decrypt_token_v4(SymmetricKey.generate(), token)


def test_local_token_bit_flip():
    key = SymmetricKey.generate()
    token = encrypt_token_v4(key, {"a": 1})
    body = bytearray(b64url_decode(token[len("v4.local."):]))
    body[40] ^= 0x01

    with pytest.raises(DecryptionFailed):
        decrypt_token_v4(key, "v4.local." + b64url_encode(bytes(body)))


def test_local_token_footer_is_authenticated():
    key = SymmetricKey.generate()
    token = encrypt_token_v4(key, {"a": 1}, footer=b"kid-1")
    other_footer = token.rsplit(".", 1)[0] + "." + b64url_encode(b"kid-2")

    with pytest.raises(DecryptionFailed):
        decrypt_token_v4(key, other_footer)


# --- Claims + rules -----------------------------------------------------------------------------


def test_decode_signed_checks_bindings():
    sk = AsymmetricSecretKey.generate()
    token = encode_signed({"x": 1}, sk, audience="rp.example", subject="auth.example", **_window())

    claims = decode_signed(token, sk.public_key(), audience="rp.example", subject="auth.example")
    assert claims["x"] == 1

    with pytest.raises(AudienceMismatch):
        decode_signed(token, sk.public_key(), audience="other.example")
    with pytest.raises(SubjectMismatch):
        decode_signed(token, sk.public_key(), subject="other.example")


def test_decode_signed_expired():
    sk = AsymmetricSecretKey.generate()
    token = encode_signed({"x": 1}, sk, **_window(minutes=-1))
    with pytest.raises(Expired):
        decode_signed(token, sk.public_key())


def test_decode_local_not_yet_valid():
    key = SymmetricKey.generate()
    now = now_utc()
    token = encode_local(
        {"x": 1},
        key,
        issued_at=now,
        not_before=now + timedelta(minutes=1),
        expiration=now + timedelta(minutes=5),
    )
    with pytest.raises(Expired):
        decode_local(token, key)


def test_token_without_expiration_is_rejected():
    sk = AsymmetricSecretKey.generate()
    token = encode_signed({"x": 1}, sk)
    with pytest.raises(Expired):
        decode_signed(token, sk.public_key())


def test_not_expired_uses_injected_clock():
    sk = AsymmetricSecretKey.generate()
    window = _window()
    token = encode_signed({"x": 1}, sk, **window)

    later = window["expiration"] + timedelta(seconds=1)
    parser = TokenParser(PURPOSE_PUBLIC, sk.public_key(), [NotExpired(now=lambda: later)])
    with pytest.raises(Expired):
        parser.parse(token)


def test_parser_add_rule_is_immutable():
    sk = AsymmetricSecretKey.generate()
    base = TokenParser(PURPOSE_PUBLIC, sk.public_key())
    extended = base.add_rule(NotExpired())

    assert base.rules == ()
    assert len(extended.rules) == 1


def test_parser_rejects_wrong_key_type():
    with pytest.raises(TypeError):
        TokenParser(PURPOSE_PUBLIC, SymmetricKey.generate())
