import os
import json
import logging
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple, Union

from authgate.core.config import SECRET_FILE_PATH, APP_NAME, ACCOUNT_NAME
from authgate.core.totp import generate_secret

logger = logging.getLogger(__name__)

STATUS_ABSENT = "absent"
STATUS_PENDING = "pending"
STATUS_ENROLLED = "enrolled"
STATUS_UNREADABLE = "unreadable"


class PersistenceReadFailure(RuntimeError):
    """The secret file exists but could not be read or parsed."""


class PersistenceWriteFailure(RuntimeError):
    """The enrollment record could not be written durably."""


@dataclass
class EnrollmentRecord:
    secret: str
    provisioning_uri: str
    issuer: str
    account_name: str
    enrolled: bool = False
    enrolled_at: Optional[str] = None

    def to_json(self) -> dict:
        data = {
            "secret": self.secret,
            "provisioningURI": self.provisioning_uri,
            "enrolled": self.enrolled,
            "issuer": self.issuer,
            "accountName": self.account_name,
        }
        if self.enrolled_at:
            data["enrolledAt"] = self.enrolled_at
        return data

    @classmethod
    def from_json(cls, data) -> "EnrollmentRecord":
        if not isinstance(data, dict):
            raise ValueError("secret file must hold a JSON object")
        secret = data.get("secret")
        if not isinstance(secret, str) or not secret:
            raise ValueError("secret is missing")
        enrolled = data.get("enrolled", False)
        if not isinstance(enrolled, bool):
            raise ValueError("enrolled must be a boolean")
        enrolled_at = data.get("enrolledAt")
        if enrolled_at is not None and not isinstance(enrolled_at, str):
            raise ValueError("enrolledAt must be a timestamp string")
        return cls(
            secret=secret,
            # Older files used "otpauthUrl" for the provisioning URI.
            provisioning_uri=str(data.get("provisioningURI") or data.get("otpauthUrl") or ""),
            issuer=str(data.get("issuer") or ""),
            account_name=str(data.get("accountName") or ""),
            enrolled=enrolled,
            enrolled_at=enrolled_at,
        )


class SecretStore:
    """Persists the single TOTP secret and its enrollment flag as a JSON file.

    Reads fail toward "not enrolled": a missing, unreadable or malformed
    file loads as ``None``. An unreadable file is remembered so the setup
    flow can refuse to overwrite it instead of silently re-enrolling.
    """

    def __init__(self, path: Union[str, Path], issuer: str, account_name: str):
        self.path = Path(path)
        self.issuer = issuer
        self.account_name = account_name
        self._lock = threading.Lock()
        self._unreadable = False

    def load(self) -> Optional[EnrollmentRecord]:
        self._unreadable = False
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            self._unreadable = True
            logger.warning(f"Failed to read TOTP secret file {self.path}: {e}")
            return None

        try:
            return EnrollmentRecord.from_json(json.loads(raw))
        except ValueError as e:
            self._unreadable = True
            logger.warning(f"Ignoring malformed TOTP secret file {self.path}: {e}")
            return None

    def save(self, record: EnrollmentRecord) -> None:
        """Write the record atomically with owner-only permissions."""
        directory = self.path.parent
        try:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".secret-", suffix=".tmp", dir=str(directory))
            try:
                os.fchmod(fd, 0o600)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(record.to_json(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
                raise
        except OSError as e:
            logger.error(f"Failed to persist TOTP secret to {self.path}: {e}")
            raise PersistenceWriteFailure(str(e)) from e
        self._unreadable = False

    def generate(self) -> Tuple[str, str]:
        return generate_secret(self.issuer, self.account_name)

    def is_enrolled(self) -> bool:
        record = self.load()
        return record is not None and record.enrolled

    def status(self) -> str:
        record = self.load()
        if record is None:
            return STATUS_UNREADABLE if self._unreadable else STATUS_ABSENT
        return STATUS_ENROLLED if record.enrolled else STATUS_PENDING

    def ensure_pending(self) -> EnrollmentRecord:
        """Return the stored record, generating a pending one only if none exists.

        Repeat visits reuse the pending secret; the existence check happens
        before generation, under the store lock.
        """
        with self._lock:
            record = self.load()
            if record is not None:
                return record
            if self._unreadable:
                raise PersistenceReadFailure(f"refusing to overwrite unreadable secret file {self.path}")

            secret, uri = self.generate()
            record = EnrollmentRecord(
                secret=secret,
                provisioning_uri=uri,
                issuer=self.issuer,
                account_name=self.account_name,
            )
            self.save(record)
            logger.info("Generated pending TOTP secret for enrollment")
            return record

    def mark_enrolled(self, record: EnrollmentRecord) -> EnrollmentRecord:
        """Flip the pending record to enrolled and persist it.

        The in-memory record is only updated once the write succeeded.
        """
        if record.enrolled:
            return record
        with self._lock:
            enrolled = EnrollmentRecord(
                secret=record.secret,
                provisioning_uri=record.provisioning_uri,
                issuer=record.issuer,
                account_name=record.account_name,
                enrolled=True,
                enrolled_at=datetime.now(timezone.utc).isoformat(),
            )
            self.save(enrolled)
            return enrolled


secret_store = SecretStore(SECRET_FILE_PATH, issuer=APP_NAME, account_name=ACCOUNT_NAME)
