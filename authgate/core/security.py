import math
import time
import threading

from authgate.core.config import LOGIN_MAX_ATTEMPTS, LOGIN_WINDOW_SECONDS

# ============================================================================
# Rate Limiting (fixed window, process-global)
# ============================================================================
class FixedWindowRateLimiter:
    """In-memory fixed-window limiter for login attempts.

    The window is global to the process, not keyed by client: the gateway
    protects a single shared secret.
    """

    def __init__(self, max_attempts: int, window_seconds: float, *, clock=time.monotonic):
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self.count = 0
        self.window_start = clock()

    def attempt(self) -> bool:
        """Count one attempt; return False without counting once the cap is hit."""
        with self._lock:
            now = self._clock()
            if now - self.window_start > self.window_seconds:
                self.count = 0
                self.window_start = now

            if self.count >= self.max_attempts:
                return False

            self.count += 1
            return True

    def reset(self) -> None:
        with self._lock:
            self.count = 0
            self.window_start = self._clock()

    def retry_after(self) -> int:
        """Seconds until the current window closes."""
        with self._lock:
            remaining = self.window_start + self.window_seconds - self._clock()
        return max(0, math.ceil(remaining))


login_rate_limiter = FixedWindowRateLimiter(
    max_attempts=LOGIN_MAX_ATTEMPTS,
    window_seconds=LOGIN_WINDOW_SECONDS,
)
