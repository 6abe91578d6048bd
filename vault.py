"""Device-bound storage for upstream login credentials.

Each logical key (``gourmet``, ``ventopay``, ...) is one small JSON file. The
username/password payload is signed with itsdangerous using a salt bound to
the key, then encrypted with Fernet under a key stretched from the device
passphrase. A file copied to another device or renamed to another key
therefore reads back as absent.
"""

import base64
import hashlib
import json
import logging
import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Optional, Protocol, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from itsdangerous import BadSignature, URLSafeSerializer
from pydantic import ValidationError

from config import Settings, get_settings
from errors import CredentialError
from schemas import Credential

logger = logging.getLogger(__name__)

KEY_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
FILE_SUFFIX = ".cred"
FORMAT_VERSION = 1
KDF_ITERATIONS = 390_000
MAX_KDF_ITERATIONS = 10 * KDF_ITERATIONS
MACHINE_ID_PATHS = (Path("/etc/machine-id"), Path("/var/lib/dbus/machine-id"))


class KeySource(Protocol):
    def passphrase(self) -> str:
        ...


class StaticKeySource:
    def __init__(self, passphrase: str) -> None:
        if not passphrase:
            raise ValueError("Passphrase must not be empty")
        self._passphrase = passphrase

    def passphrase(self) -> str:
        return self._passphrase


class DeviceIdKeySource:
    """Passphrase = base64(sha256(device id)), as the phone apps derive it."""

    def __init__(self, device_id: str) -> None:
        if not device_id:
            raise ValueError("Device id must not be empty")
        self.device_id = device_id

    def passphrase(self) -> str:
        digest = hashlib.sha256(self.device_id.encode("utf-8")).digest()
        return base64.b64encode(digest).decode("ascii")


def read_machine_id() -> str:
    for path in MACHINE_ID_PATHS:
        try:
            value = path.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if value:
            return value
    return f"node-{uuid.getnode():012x}"


class MachineKeySource(DeviceIdKeySource):
    def __init__(self) -> None:
        super().__init__(read_machine_id())


def key_source_from_settings(settings: Optional[Settings] = None) -> KeySource:
    settings = settings or get_settings()
    if settings.device_key:
        return StaticKeySource(settings.device_key)
    return MachineKeySource()


def _fernet(passphrase: str, salt: bytes, iterations: int) -> Fernet:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=salt, iterations=iterations
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(passphrase.encode("utf-8"))))


def _serializer(passphrase: str, key: str) -> URLSafeSerializer:
    return URLSafeSerializer(passphrase, salt=f"credentials:{key}")


class CredentialVault:
    def __init__(
        self,
        directory: Union[str, Path],
        key_source: Optional[KeySource] = None,
        iterations: int = KDF_ITERATIONS,
    ) -> None:
        self.directory = Path(directory)
        self.key_source = key_source
        self.iterations = iterations

    def set_key_source(self, key_source: Optional[KeySource]) -> None:
        self.key_source = key_source

    def _path(self, key: str) -> Path:
        if not KEY_PATTERN.match(key or ""):
            raise ValueError(f"Invalid credential key: {key!r}")
        return self.directory / f"{key}{FILE_SUFFIX}"

    def _passphrase(self) -> str:
        if self.key_source is None:
            raise CredentialError("No key source configured for the credential vault")
        return self.key_source.passphrase()

    def save_credentials(self, key: str, username: str, password: str) -> None:
        path = self._path(key)
        credential = Credential(username=username, password=password)
        passphrase = self._passphrase()

        signed = _serializer(passphrase, key).dumps(
            {"u": credential.username, "p": credential.password}
        )
        salt = os.urandom(16)
        token = _fernet(passphrase, salt, self.iterations).encrypt(
            signed.encode("utf-8")
        )
        envelope = {
            "v": FORMAT_VERSION,
            "iterations": self.iterations,
            "salt": base64.b64encode(salt).decode("ascii"),
            "token": token.decode("ascii"),
        }

        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.directory, prefix=f".{key}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(envelope, fh)
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CredentialError(f"Cannot write credentials for {key}") from exc
        logger.info(f"credentials_saved: key={key}")

    def get_credentials(self, key: str) -> Optional[Credential]:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return self._open(key, path)
        except CredentialError as exc:
            logger.warning(f"credentials_unreadable: key={key} reason={exc}")
            return None

    def _open(self, key: str, path: Path) -> Credential:
        passphrase = self._passphrase()
        try:
            envelope = json.loads(path.read_text(encoding="utf-8"))
            if envelope.get("v") != FORMAT_VERSION:
                raise CredentialError(f"unsupported format {envelope.get('v')!r}")
            salt = base64.b64decode(envelope["salt"], validate=True)
            token = envelope["token"].encode("ascii")
            iterations = int(envelope["iterations"])
            if not 1 <= iterations <= max(self.iterations, MAX_KDF_ITERATIONS):
                raise ValueError(f"iteration count {iterations} out of range")
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise CredentialError("corrupted credential file") from exc

        try:
            signed = _fernet(passphrase, salt, iterations).decrypt(token)
        except InvalidToken as exc:
            raise CredentialError("cannot decrypt on this device") from exc

        try:
            data = _serializer(passphrase, key).loads(signed.decode("utf-8"))
            return Credential(username=data["u"], password=data["p"])
        except BadSignature as exc:
            raise CredentialError("file was not written for this key") from exc
        except (UnicodeDecodeError, KeyError, TypeError, ValidationError) as exc:
            raise CredentialError("corrupted credential payload") from exc

    def delete_credentials(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise CredentialError(f"Cannot delete credentials for {key}") from exc
        logger.info(f"credentials_deleted: key={key}")
