import hashlib

import pytest
from itsdangerous import URLSafeTimedSerializer

from authgate.core.session import Session, SessionCodec, session_from_cookie_header

KEY = "test-signing-key"
URLSAFE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


@pytest.fixture
def codec():
    return SessionCodec(KEY, max_age=3600)


@pytest.mark.parametrize("session", [
    Session(),
    Session(authenticated=True),
    Session(return_to="/files?folder=/home"),
    Session(authenticated=True, return_to="/"),
])
def test_round_trip(codec, session):
    assert codec.decode(codec.encode(session)) == session


def _signature_bit_flips(token: str):
    """Yield the token once for every bit of the signature, with that bit flipped."""
    payload, _, signature = token.rpartition(".")
    for index, char in enumerate(signature):
        value = URLSAFE_ALPHABET.index(char)
        for bit in range(6):
            flipped = URLSAFE_ALPHABET[value ^ (1 << bit)]
            yield f"{payload}.{signature[:index]}{flipped}{signature[index + 1:]}"


def test_flipped_signature_bit_is_invalid(codec):
    token = codec.encode(Session(authenticated=True))
    tampered = list(_signature_bit_flips(token))

    # A SHA-256 signature is 43 base64 characters.
    assert len(tampered) == 43 * 6
    for candidate in tampered:
        assert codec.decode(candidate) is None, candidate


def test_other_key_is_invalid(codec):
    token = SessionCodec("another-key", max_age=3600).encode(Session(authenticated=True))
    assert codec.decode(token) is None


@pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c", "null"])
def test_malformed_tokens_are_invalid(codec, token):
    assert codec.decode(token) is None


def test_expired_token_is_invalid(codec):
    token = codec.encode(Session(authenticated=True))
    short = SessionCodec(KEY, max_age=-1)
    assert short.decode(token) is None
    assert codec.decode(token) == Session(authenticated=True)


def test_signed_but_wrong_shape_is_invalid():
    # Correctly signed payloads still have to look like a session.
    serializer = URLSafeTimedSerializer(KEY, salt="authgate.session", signer_kwargs={"digest_method": hashlib.sha256})
    codec = SessionCodec(KEY, max_age=3600)
    assert codec.decode(serializer.dumps(["authenticated"])) is None
    assert codec.decode(serializer.dumps({"authenticated": "true"})) is None
    assert codec.decode(serializer.dumps({"returnTo": 42})) is None


def test_raw_cookie_header_matches_direct_decode(codec):
    token = codec.encode(Session(authenticated=True, return_to="/x"))
    header = f"theme=dark; authgate_session={token}; other=1"

    assert session_from_cookie_header(header, codec, "authgate_session") == codec.decode(token)


def test_raw_cookie_header_without_session_cookie(codec):
    assert session_from_cookie_header(None, codec, "authgate_session") is None
    assert session_from_cookie_header("", codec, "authgate_session") is None
    assert session_from_cookie_header("theme=dark", codec, "authgate_session") is None
