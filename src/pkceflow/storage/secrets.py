"""Secret stores and the token vault.

A secret store keeps opaque bytes under a ``(service, account)`` pair, the
way a platform keychain does. ``TokenVault`` binds a store to the single
pair that identifies "the current access token" and converts between bytes
and ``AccessToken``.

``FileSecretStore`` writes atomically: content goes to a temporary file in
the same directory, is fsynced, then renamed into place with ``0o600``
permissions, so a crash never leaves a half-written token behind.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from pkceflow.models.errors import SecretStoreError, StoreCorruptError
from pkceflow.models.tokens import AccessToken

logger = logging.getLogger(__name__)

DEFAULT_SERVICE = "pkceflow"
DEFAULT_ACCOUNT = "accessToken"


class SecretStore(Protocol):
    """Key-value store for secrets, addressed by service and account."""

    def save(self, service: str, account: str, data: bytes) -> None: ...

    def read(self, service: str, account: str) -> bytes | None: ...

    def delete(self, service: str, account: str) -> None: ...


class InMemorySecretStore:
    """Secret store backed by a dict. Contents die with the process."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], bytes] = {}

    def save(self, service: str, account: str, data: bytes) -> None:
        self._entries[(service, account)] = bytes(data)

    def read(self, service: str, account: str) -> bytes | None:
        return self._entries.get((service, account))

    def delete(self, service: str, account: str) -> None:
        self._entries.pop((service, account), None)


_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def _safe_name(name: str) -> str:
    # No separators, and no leading dot so "." and ".." cannot appear
    return re.sub(r"^\.", "_", _UNSAFE_CHARS.sub("_", name)) or "_"


class FileSecretStore:
    """Secret store keeping one file per entry under a base directory.

    Entries live at ``<base_dir>/<service>/<account>.secret``. Names are
    sanitized so they cannot escape the base directory.

    Args:
        base_dir: Directory that holds the entries. Created on first write.
    """

    def __init__(self, base_dir: str | os.PathLike[str]) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, service: str, account: str) -> Path:
        """The file that holds the entry for ``(service, account)``."""
        return (
            self._base_dir
            / _safe_name(service)
            / f"{_safe_name(account)}.secret"
        )

    def save(self, service: str, account: str, data: bytes) -> None:
        """Persist an entry atomically with ``0o600`` permissions.

        Raises:
            SecretStoreError: If the file cannot be written
        """
        path = self.path_for(service, account)
        tmp_path: str | None = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "wb") as tmp:
                os.chmod(tmp_path, 0o600)
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise SecretStoreError(f"Failed to write secret {path}: {e}") from e

    def read(self, service: str, account: str) -> bytes | None:
        """Read an entry, or None if it does not exist.

        Raises:
            SecretStoreError: If the file exists but cannot be read
        """
        path = self.path_for(service, account)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SecretStoreError(f"Failed to read secret {path}: {e}") from e

    def delete(self, service: str, account: str) -> None:
        """Delete an entry. A missing entry is not an error."""
        path = self.path_for(service, account)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise SecretStoreError(f"Failed to delete secret {path}: {e}") from e


class TokenVault:
    """Persists the session's access token under a fixed service/account."""

    def __init__(
        self,
        store: SecretStore,
        service: str = DEFAULT_SERVICE,
        account: str = DEFAULT_ACCOUNT,
    ) -> None:
        self.store = store
        self.service = service
        self.account = account

    def save(self, token: AccessToken) -> None:
        self.store.save(self.service, self.account, token.to_json_bytes())

    def load_strict(self) -> AccessToken | None:
        """Load the stored token.

        Returns:
            The token, or None if nothing is stored

        Raises:
            StoreCorruptError: If the stored bytes are not a valid token
            SecretStoreError: If the store cannot be read
        """
        data = self.store.read(self.service, self.account)
        if data is None:
            return None
        try:
            return AccessToken.from_json_bytes(data)
        except ValidationError as e:
            raise StoreCorruptError(
                f"Stored token for {self.service}/{self.account} is not decodable"
            ) from e

    def load(self) -> AccessToken | None:
        """Load the stored token, treating unreadable entries as absent."""
        try:
            return self.load_strict()
        except SecretStoreError as e:
            logger.warning(f"Ignoring stored token: {e}")
            return None

    def clear(self) -> None:
        self.store.delete(self.service, self.account)
