"""
API key storage and bearer token handling for the HTTP API.
"""

import datetime
import json
import threading
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Union

import jwt
from pydantic import BaseModel, ValidationError

from ..core.errors import AuthenticationError, BackendUnavailableError
from ..core.logging_config import get_logger
from ..core.records import as_utc, utc_now

logger = get_logger(__name__)

ALGORITHM = "HS256"
DEFAULT_TOKEN_TTL_HOURS = 24
DEFAULT_KEY_TTL_DAYS = 365


class AuthKey(BaseModel):
    """An issued API key."""

    key: str
    created_at: datetime.datetime
    expires_at: datetime.datetime
    is_active: bool = True

    def is_valid(self, now: Optional[datetime.datetime] = None) -> bool:
        now = now or utc_now()
        return self.is_active and as_utc(self.expires_at) > now


class FileKeyStore:
    """API keys kept as a JSON object mapping key -> AuthKey."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

        if not self.path.exists():
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text("{}", "utf-8")
            except OSError as e:
                raise BackendUnavailableError("keys", f"{self.path}: {e}") from e

    def _read(self) -> Dict[str, AuthKey]:
        try:
            raw = json.loads(self.path.read_text("utf-8"))
            return {key: AuthKey.model_validate(value) for key, value in raw.items()}
        except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
            raise BackendUnavailableError("keys", f"{self.path}: {e}") from e

    def _write(self, keys: Dict[str, AuthKey]) -> None:
        document = {key: value.model_dump(mode="json") for key, value in keys.items()}
        try:
            self.path.write_text(json.dumps(document, indent=2), "utf-8")
        except OSError as e:
            raise BackendUnavailableError("keys", f"{self.path}: {e}") from e

    def get_key(self, key: str) -> Optional[AuthKey]:
        with self._lock:
            return self._read().get(key)

    def save_key(self, auth_key: AuthKey) -> None:
        with self._lock:
            keys = self._read()
            keys[auth_key.key] = auth_key
            self._write(keys)

    def delete_key(self, key: str) -> None:
        with self._lock:
            keys = self._read()
            keys.pop(key, None)
            self._write(keys)

    def list_keys(self) -> List[AuthKey]:
        with self._lock:
            return list(self._read().values())


class AuthManager:
    """Validates API keys and issues HS256 tokens that carry them."""

    def __init__(
        self,
        key_store: FileKeyStore,
        secret: str,
        token_ttl_hours: int = DEFAULT_TOKEN_TTL_HOURS,
        key_ttl_days: int = DEFAULT_KEY_TTL_DAYS,
    ):
        self.key_store = key_store
        self.secret = secret
        self.token_ttl = datetime.timedelta(hours=token_ttl_hours)
        self.key_ttl = datetime.timedelta(days=key_ttl_days)

    def validate_key(self, key: str) -> bool:
        """True when the key exists, is active and has not expired."""
        if not key:
            return False
        auth_key = self.key_store.get_key(key)
        return auth_key is not None and auth_key.is_valid()

    def generate_key(self) -> AuthKey:
        """Issue and persist a new random API key."""
        now = utc_now()
        auth_key = AuthKey(
            key=str(uuid.uuid4()),
            created_at=now,
            expires_at=now + self.key_ttl,
            is_active=True,
        )
        self.key_store.save_key(auth_key)
        logger.info("Generated API key expiring %s", auth_key.expires_at.isoformat())
        return auth_key

    def generate_token(self, api_key: str) -> str:
        payload = {"api_key": api_key, "exp": utc_now() + self.token_ttl}
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)

    def validate_token(self, token: str) -> str:
        """Return the API key carried by a valid token."""
        try:
            claims = jwt.decode(token, self.secret, algorithms=[ALGORITHM])
        except jwt.ExpiredSignatureError as e:
            raise AuthenticationError("token expired") from e
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("invalid token") from e

        api_key = claims.get("api_key")
        if not isinstance(api_key, str):
            raise AuthenticationError("invalid token claims")
        return api_key

    def authenticate(self, token: str) -> str:
        """Validate the token and that its API key is still usable."""
        api_key = self.validate_token(token)
        if not self.validate_key(api_key):
            raise AuthenticationError("invalid or expired API key")
        return api_key
