import base64
import binascii
import logging
from datetime import datetime
from io import BytesIO
from typing import Optional, Tuple, Union

import pyotp
import qrcode

logger = logging.getLogger(__name__)

TOTP_DIGITS = 6
TOTP_INTERVAL_SECONDS = 30
# Accept the current step and one step either side (±30s clock skew).
TOTP_VALID_WINDOW = 1
# 32 base32 characters = 160 bits
SECRET_LENGTH = 32


def generate_secret(issuer: str, account_name: str) -> Tuple[str, str]:
    """Generate a fresh TOTP secret and its otpauth:// provisioning URI."""
    secret = pyotp.random_base32(length=SECRET_LENGTH)
    return secret, provisioning_uri(secret, issuer, account_name)


def provisioning_uri(secret: str, issuer: str, account_name: str) -> str:
    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL_SECONDS)
    return totp.provisioning_uri(name=account_name, issuer_name=issuer)


def verify_totp(
    token: Optional[str],
    secret: str,
    for_time: Optional[Union[int, datetime]] = None,
) -> bool:
    """Check a 6-digit code against the secret.

    Malformed input (non-numeric, wrong length, undecodable secret) is
    reported the same way as a wrong code: ``False``.
    """
    if not token or not secret:
        return False
    token = token.strip()
    if len(token) != TOTP_DIGITS or not token.isdigit():
        return False
    totp = pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL_SECONDS)
    try:
        return totp.verify(token, for_time=for_time, valid_window=TOTP_VALID_WINDOW)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"TOTP verification failed on malformed secret: {e}")
        return False


def qr_data_url(uri: str) -> str:
    """Render a provisioning URI as a PNG data URL for the setup page."""
    # Smaller QR for faster transfer while preserving scannability
    qr_code = qrcode.QRCode(version=1, box_size=6, border=2)
    qr_code.add_data(uri)
    qr_code.make(fit=True)

    img = qr_code.make_image(fill_color="black", back_color="white")
    img_bytes = BytesIO()
    img.save(img_bytes)
    img_base64 = base64.b64encode(img_bytes.getvalue()).decode()
    return f"data:image/png;base64,{img_base64}"
