"""
Credential persistence for the Fitbit grabber.
"""

import json
import logging
import os
import stat
import time
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import DeserializationError, IoError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_FILE = ".token"


@dataclass
class Credential:
    """OAuth 2.0 token set issued by Fitbit."""

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    expires_at: Optional[float] = None  # Unix timestamp
    scopes: List[str] = field(default_factory=list)
    user_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_token_response(cls, payload: Dict[str, Any], now: Optional[float] = None) -> "Credential":
        """Build a credential from a token endpoint response body."""
        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise DeserializationError("token response has no access_token")

        data = dict(payload)
        expires_in = data.pop("expires_in", None)
        if expires_in is not None:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError) as e:
                raise DeserializationError(f"invalid expires_in in token response: {expires_in!r}") from e
        scope = data.pop("scope", "")
        credential = cls(
            access_token=data.pop("access_token"),
            refresh_token=data.pop("refresh_token", None) or None,
            token_type=data.pop("token_type", "Bearer"),
            expires_in=expires_in,
            scopes=sorted(scope.split()) if isinstance(scope, str) else scope,
            user_id=data.pop("user_id", None),
        )
        if expires_in is not None:
            credential.expires_at = (now if now is not None else time.time()) + expires_in
        credential.extra = data
        credential.validate()
        return credential

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credential":
        if not isinstance(data, dict) or not data.get("access_token"):
            raise DeserializationError("credential record has no access_token")

        known = {f.name for f in fields(cls)}
        extra = data.get("extra") or {}
        if not isinstance(extra, dict):
            raise DeserializationError("credential field extra must be an object")
        extra = dict(extra)
        # Unknown top-level keys are kept so a newer file still loads.
        extra.update({k: v for k, v in data.items() if k not in known})
        kwargs = {k: v for k, v in data.items() if k in known and k != "extra"}
        credential = cls(extra=extra, **kwargs)
        credential.validate()
        return credential

    def validate(self) -> None:
        """Raise DeserializationError unless every field has its declared type."""
        for name, allowed in _FIELD_TYPES.items():
            value = getattr(self, name)
            if value is None and name in _OPTIONAL_FIELDS:
                continue
            # bool is an int subclass but never a valid timestamp or lifetime.
            if isinstance(value, bool) or not isinstance(value, allowed):
                raise DeserializationError(f"credential field {name} has invalid value {value!r}")
        if not self.access_token:
            raise DeserializationError("credential has an empty access_token")
        if not all(isinstance(scope, str) for scope in self.scopes):
            raise DeserializationError(f"credential scopes must be strings: {self.scopes!r}")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def is_expired(self, leeway: int = 60, now: Optional[float] = None) -> bool:
        """Check if the access token is expired or about to expire."""
        if not self.expires_at:
            return True
        current_time = now if now is not None else time.time()
        return current_time + leeway >= self.expires_at


_FIELD_TYPES = {
    "access_token": str,
    "refresh_token": str,
    "token_type": str,
    "expires_in": int,
    "expires_at": (int, float),
    "scopes": list,
    "user_id": str,
    "extra": dict,
}
_OPTIONAL_FIELDS = {"refresh_token", "expires_in", "expires_at", "user_id"}


class TokenStore:
    """File-based credential store, one JSON record per file.

    Files are chmod 0600 (owner-only read/write).
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_TOKEN_FILE):
        self.path = Path(path)

    def save(self, credential: Credential) -> None:
        """Overwrite the token file with the given credential."""
        data = json.dumps(credential.to_dict(), separators=(",", ":"))
        try:
            self.path.write_text(data)
            os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)
        except OSError as e:
            raise IoError(f"unable to write token file {self.path}: {e}") from e
        logger.info("Saved Fitbit credential to %s", self.path)

    def load(self) -> Credential:
        """Load the credential. Raises IoError if the file cannot be read."""
        try:
            contents = self.path.read_text()
        except OSError as e:
            raise IoError(f"unable to read token file {self.path}: {e}") from e

        try:
            data = json.loads(contents.strip())
        except ValueError as e:
            raise DeserializationError(f"token file {self.path} is not valid JSON: {e}") from e

        logger.debug("Loaded Fitbit credential from %s", self.path)
        return Credential.from_dict(data)

    def exists(self) -> bool:
        return self.path.exists()


class MemoryTokenStore:
    """Keeps the credential in memory; same contract as TokenStore."""

    def __init__(self, credential: Optional[Credential] = None):
        self._data: Optional[str] = None
        if credential is not None:
            self.save(credential)

    def save(self, credential: Credential) -> None:
        self._data = json.dumps(credential.to_dict(), separators=(",", ":"))

    def load(self) -> Credential:
        if self._data is None:
            raise IoError("no credential stored")
        return Credential.from_dict(json.loads(self._data))

    def exists(self) -> bool:
        return self._data is not None


def save_token(path: Union[str, Path], credential: Credential) -> None:
    TokenStore(path).save(credential)


def load_token(path: Union[str, Path]) -> Credential:
    return TokenStore(path).load()
