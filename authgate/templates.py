from html import escape
from typing import Optional

from fastapi.responses import HTMLResponse

from authgate.core.config import APP_NAME

_STYLE = """
        * { margin: 0; padding: 0; box-sizing: border-box; }
        :root {
            --bg: #1a1a2e;
            --card: #16213e;
            --text: #e0e0e0;
            --muted: #a0a0b8;
            --accent: #6c63ff;
            --accent-hover: #5a52d5;
            --error-bg: #3d1f2b;
            --error: #ff6b6b;
            --radius: 12px;
        }
        body {
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
            background: var(--bg);
            color: var(--text);
            min-height: 100vh;
            display: flex;
            align-items: center;
            justify-content: center;
        }
        .container { width: 100%; max-width: 420px; padding: 20px; }
        .card {
            background: var(--card);
            border-radius: var(--radius);
            padding: 40px 32px;
            box-shadow: 0 8px 32px rgba(0, 0, 0, 0.3);
            text-align: center;
        }
        h1 { font-size: 1.5rem; margin-bottom: 8px; color: #fff; }
        p { color: var(--muted); margin-bottom: 24px; font-size: 0.95rem; }
        input[type="text"] {
            width: 100%;
            padding: 14px 16px;
            font-size: 1.8rem;
            text-align: center;
            letter-spacing: 0.5em;
            border: 2px solid #2a2a4a;
            border-radius: 8px;
            background: #0f0f23;
            color: #fff;
            outline: none;
        }
        input[type="text"]:focus { border-color: var(--accent); }
        button {
            width: 100%;
            padding: 14px;
            margin-top: 16px;
            font-size: 1rem;
            font-weight: 600;
            border: none;
            border-radius: 8px;
            background: var(--accent);
            color: #fff;
            cursor: pointer;
        }
        button:hover { background: var(--accent-hover); }
        .error {
            background: var(--error-bg);
            color: var(--error);
            padding: 10px 16px;
            border-radius: 8px;
            margin-bottom: 16px;
            font-size: 0.9rem;
        }
        .qr-container { margin: 20px 0; }
        .qr-container img { border-radius: 8px; background: #fff; padding: 8px; }
        .secret {
            font-family: monospace;
            font-size: 0.95rem;
            word-break: break-all;
            background: #0f0f23;
            padding: 10px;
            border-radius: 8px;
            margin-bottom: 24px;
        }
"""


def _page(title: str, body: str, status_code: int = 200, headers: Optional[dict] = None) -> HTMLResponse:
    return HTMLResponse(f"""
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{escape(APP_NAME)} — {escape(title)}</title>
    <style>{_STYLE}</style>
</head>
<body>
    <div class="container">
        <div class="card">
{body}
        </div>
    </div>
</body>
</html>
""", status_code=status_code, headers=headers)


def _error_block(error: Optional[str]) -> str:
    return f'            <div class="error">{escape(error)}</div>' if error else ""


def _code_form(action: str, button: str) -> str:
    return f"""
            <form method="POST" action="{action}">
                <input type="text" name="token" inputmode="numeric" pattern="[0-9]{{6}}"
                       maxlength="6" autocomplete="one-time-code" autofocus required placeholder="000000">
                <button type="submit">{escape(button)}</button>
            </form>"""


def get_setup_html(qr_data_url: str, secret: str, error: Optional[str] = None,
                   status_code: int = 200) -> HTMLResponse:
    body = f"""
            <h1>Set up two-factor authentication</h1>
            <p>Scan the QR code with your authenticator app, then enter the 6-digit code to finish.</p>
{_error_block(error)}
            <div class="qr-container"><img src="{escape(qr_data_url)}" alt="TOTP QR code" width="200" height="200"></div>
            <p>Or enter this key manually:</p>
            <div class="secret">{escape(secret)}</div>
{_code_form("/auth/setup", "Verify & enable")}"""
    return _page("2FA Setup", body, status_code=status_code)


def get_login_html(error: Optional[str] = None, status_code: int = 200,
                   retry_after: Optional[int] = None) -> HTMLResponse:
    body = f"""
            <h1>{escape(APP_NAME)}</h1>
            <p>Enter the 6-digit code from your authenticator app.</p>
{_error_block(error)}
{_code_form("/auth/login", "Sign in")}"""
    headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
    return _page("Sign in", body, status_code=status_code, headers=headers)


def get_starting_html(retry_after: int = 2) -> HTMLResponse:
    """Placeholder shown while the upstream is not accepting connections yet."""
    body = f"""
            <h1>Starting up…</h1>
            <p>{escape(APP_NAME)} is not ready yet. This page will retry automatically.</p>
            <script>setTimeout(function () {{ window.location.reload(); }}, {retry_after * 1000});</script>"""
    return _page("Starting", body, status_code=503, headers={"Retry-After": str(retry_after)})


def get_error_html(message: str, status_code: int = 500) -> HTMLResponse:
    body = f"""
            <h1>Something went wrong</h1>
{_error_block(message)}"""
    return _page("Error", body, status_code=status_code)
