"""
Encrypted secret files.

Each secret lives at ``<root>/<service>/<name>`` as ``nonce || ciphertext``
sealed with AES-256-GCM, file mode 0600. The master key comes from
``APP_MASTER_KEY`` (base64, 32 bytes). Without it the store is ephemeral:
secrets are kept in memory for the life of the process and never touch disk.
"""

import base64
import binascii
import os
import re
import secrets
import string
from pathlib import Path
from typing import Dict, Optional, Tuple

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import Settings, get_settings
from .errors import ConfigInvalid

logger = structlog.get_logger()

KEY_SIZE = 32
NONCE_SIZE = 12
DEFAULT_PASSWORD_LENGTH = 40
PASSWORD_SECRET = "pass"
PASSWORD_ALPHABET = string.ascii_letters + string.digits

_SAFE_SEGMENT = re.compile(r"^[A-Za-z0-9_.-]+$")


def generate_password(length: int = DEFAULT_PASSWORD_LENGTH) -> str:
    """Random URL-safe password (letters and digits only)."""
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def decode_master_key(value: str) -> bytes:
    try:
        key = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigInvalid(f"APP_MASTER_KEY is not valid base64: {e}") from e
    if len(key) != KEY_SIZE:
        raise ConfigInvalid(f"APP_MASTER_KEY must decode to {KEY_SIZE} bytes, got {len(key)}")
    return key


class SecretStore:
    """AES-GCM encrypted secret files under a root directory."""

    def __init__(self, root: Path, master_key: bytes, ephemeral: bool = False):
        if len(master_key) != KEY_SIZE:
            raise ConfigInvalid(f"master key must be {KEY_SIZE} bytes")
        self.root = Path(root).expanduser()
        self.ephemeral = ephemeral
        self._aead = AESGCM(master_key)
        self._memory: Dict[Tuple[str, str], str] = {}

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SecretStore":
        settings = settings or get_settings()
        if settings.app_master_key:
            return cls(settings.secrets_dir, decode_master_key(settings.app_master_key))

        logger.warning(
            "secret_store_ephemeral_key",
            detail="APP_MASTER_KEY not set; generated secrets live in memory for this process only",
        )
        return cls(settings.secrets_dir, AESGCM.generate_key(bit_length=256), ephemeral=True)

    def _path(self, service: str, name: str) -> Path:
        for segment in (service, name):
            if not _SAFE_SEGMENT.match(segment) or segment in (".", ".."):
                raise ConfigInvalid(f"invalid secret path segment {segment!r}")
        return self.root / service / name

    def exists(self, service: str, name: str) -> bool:
        path = self._path(service, name)
        if self.ephemeral:
            return (service, name) in self._memory
        return path.is_file()

    def get(self, service: str, name: str) -> Optional[str]:
        """Decrypted secret, or None when it was never stored.

        Raises:
            ConfigInvalid: the file exists but the master key does not open it.
        """
        path = self._path(service, name)
        if self.ephemeral:
            return self._memory.get((service, name))
        try:
            blob = path.read_bytes()
        except FileNotFoundError:
            return None
        nonce, ciphertext = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, f"{service}/{name}".encode())
        except InvalidTag as e:
            raise ConfigInvalid(
                f"cannot decrypt secret {service}/{name} at {path}: wrong master key or corrupt "
                "file; set APP_MASTER_KEY to the key it was written with, or remove the file "
                "to generate a new one"
            ) from e
        return plaintext.decode("utf-8")

    def put(self, service: str, name: str, value: str) -> Optional[Path]:
        """Store a secret. Returns the file written, or None for an ephemeral store."""
        path = self._path(service, name)
        if self.ephemeral:
            self._memory[(service, name)] = value
            logger.debug("secret_stored_in_memory", service=service, name=name)
            return None
        path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        nonce = os.urandom(NONCE_SIZE)
        blob = nonce + self._aead.encrypt(nonce, value.encode("utf-8"), f"{service}/{name}".encode())

        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(blob)
        path.chmod(0o600)
        logger.debug("secret_stored", service=service, name=name)
        return path

    def get_or_create(
        self, service: str, name: str, length: int = DEFAULT_PASSWORD_LENGTH
    ) -> str:
        """Existing secret, or a freshly generated password that is stored first."""
        value = self.get(service, name)
        if value is None:
            value = generate_password(length)
            self.put(service, name, value)
            logger.info("secret_generated", service=service, name=name)
        return value
