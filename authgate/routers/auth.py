import logging
from fastapi import APIRouter, Request, Form
from fastapi.responses import HTMLResponse, RedirectResponse

from authgate.core.gate import (
    EnrollmentState, current_state, safe_return_to, SETUP_PATH, LOGIN_PATH, LOGOUT_PATH
)
from authgate.core.secret_store import (
    secret_store, PersistenceReadFailure, PersistenceWriteFailure
)
from authgate.core.security import login_rate_limiter
from authgate.core.totp import verify_totp, qr_data_url
from authgate.templates import get_setup_html, get_login_html, get_error_html

logger = logging.getLogger(__name__)
router = APIRouter()

INVALID_CODE = "Invalid code. Please try again."


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=302)


def _render_setup(record, error=None) -> HTMLResponse:
    try:
        qr = qr_data_url(record.provisioning_uri)
    except Exception as e:
        logger.error(f"QR code generation failed: {e}")
        return get_error_html("Failed to generate QR code", status_code=500)
    return get_setup_html(qr, record.secret, error)


# ----------------------------------------------------------------------------
# Enrollment (first run)
# ----------------------------------------------------------------------------
@router.get(SETUP_PATH, response_class=HTMLResponse, tags=["auth"])
async def setup_page(request: Request):
    """Show the enrollment page, creating the pending secret on first visit."""
    try:
        record = secret_store.ensure_pending()
    except PersistenceReadFailure as e:
        logger.error(f"Enrollment blocked: {e}")
        return get_error_html(
            "The stored 2FA secret is unreadable. Repair or remove the secret file and restart.",
            status_code=503,
        )
    except PersistenceWriteFailure:
        return get_error_html("Could not store the 2FA secret.", status_code=500)

    if record.enrolled:
        return _redirect(LOGIN_PATH)
    return _render_setup(record)


@router.post(SETUP_PATH, response_class=HTMLResponse, tags=["auth"])
async def setup_verify(request: Request, token: str = Form("")):
    """Confirm possession of the pending secret and complete enrollment."""
    record = secret_store.load()
    if record is not None and record.enrolled:
        return _redirect(LOGIN_PATH)
    if record is None:
        return _redirect(SETUP_PATH)

    if not verify_totp(token, record.secret):
        logger.info("2FA enrollment code rejected")
        return _render_setup(record, INVALID_CODE)

    try:
        secret_store.mark_enrolled(record)
    except PersistenceWriteFailure:
        return get_error_html("Enrollment could not be saved. Please try again.", status_code=500)

    request.session.pop("returnTo", None)
    request.session["authenticated"] = True
    logger.info("2FA enrollment complete")
    return _redirect("/")


# ----------------------------------------------------------------------------
# Login
# ----------------------------------------------------------------------------
@router.get(LOGIN_PATH, response_class=HTMLResponse, tags=["auth"])
async def login_page(request: Request):
    state = current_state(secret_store.load(), request.session)
    if state is EnrollmentState.NOT_ENROLLED:
        return _redirect(SETUP_PATH)
    if state is EnrollmentState.ENROLLED_LOGGED_IN:
        return _redirect("/")
    return get_login_html()


@router.post(LOGIN_PATH, response_class=HTMLResponse, tags=["auth"])
async def login_verify(request: Request, token: str = Form("")):
    """Verify a login code; the attempt counts against the global limiter."""
    record = secret_store.load()
    if record is None or not record.enrolled:
        return _redirect(SETUP_PATH)

    if not login_rate_limiter.attempt():
        retry_after = login_rate_limiter.retry_after()
        logger.warning("2FA login throttled")
        return get_login_html(
            f"Too many attempts. Please wait {retry_after} seconds.",
            status_code=429,
            retry_after=retry_after,
        )

    if not verify_totp(token, record.secret):
        logger.warning("2FA login failed: invalid code")
        return get_login_html(INVALID_CODE, status_code=401)

    login_rate_limiter.reset()
    return_to = safe_return_to(request.session.pop("returnTo", None))
    request.session["authenticated"] = True
    logger.info("2FA login successful")
    return _redirect(return_to)


@router.get(LOGOUT_PATH, tags=["auth"])
async def logout(request: Request):
    request.session.clear()
    logger.info("Session logged out")
    return _redirect(LOGIN_PATH)
