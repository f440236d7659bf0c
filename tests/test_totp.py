import pyotp

from authgate.core.totp import generate_secret, verify_totp, qr_data_url

SECRET = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
# Middle of a 30s step so ±30s lands squarely in the neighbouring steps.
T = 1_700_000_115


def test_accepts_current_and_adjacent_steps():
    code = pyotp.TOTP(SECRET).at(T)

    assert verify_totp(code, SECRET, for_time=T)
    assert verify_totp(code, SECRET, for_time=T + 30)
    assert verify_totp(code, SECRET, for_time=T - 30)


def test_rejects_codes_two_steps_away():
    code = pyotp.TOTP(SECRET).at(T)

    assert not verify_totp(code, SECRET, for_time=T + 60)
    assert not verify_totp(code, SECRET, for_time=T - 60)


def test_malformed_tokens_are_plain_failures():
    for token in (None, "", "12345", "1234567", "12a456", "abcdef", "12 456"):
        assert verify_totp(token, SECRET, for_time=T) is False


def test_surrounding_whitespace_is_ignored():
    code = pyotp.TOTP(SECRET).at(T)
    assert verify_totp(f"  {code}\n", SECRET, for_time=T)


def test_undecodable_secret_fails_closed():
    assert verify_totp("123456", "not base32 !!", for_time=T) is False
    assert verify_totp("123456", "", for_time=T) is False


def test_generate_secret_is_160_bits_with_provisioning_uri():
    secret, uri = generate_secret("Code Server", "admin")

    assert len(secret) == 32
    assert len(pyotp.TOTP(secret).byte_secret()) == 20
    assert uri.startswith("otpauth://totp/")
    assert f"secret={secret}" in uri
    assert "issuer=Code%20Server" in uri

    other, _ = generate_secret("Code Server", "admin")
    assert other != secret


def test_qr_data_url_is_png():
    _, uri = generate_secret("Code Server", "admin")
    assert qr_data_url(uri).startswith("data:image/png;base64,")
