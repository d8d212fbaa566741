"""
Token management for the ipset-manager CLI.
Stores the bearer token and the server URL between invocations.
"""

import json
import os
from pathlib import Path
from typing import Optional

DEFAULT_API_URL = "http://localhost:8080"


class TokenManager:
    """Manages authentication tokens for the CLI."""

    def __init__(self, config_dir: Optional[Path] = None):
        """
        Initialize TokenManager.

        Args:
            config_dir: Directory to store the session file. Defaults to ~/.ipset-manager
        """
        if config_dir is None:
            config_dir = Path.home() / ".ipset-manager"

        self.config_dir = config_dir
        self.session_file = self.config_dir / "session.json"

        self.config_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

    def save_token(self, token: str, api_url: str = DEFAULT_API_URL) -> None:
        """
        Save the token and the server it was issued by.

        Args:
            token: The bearer token returned by /login
            api_url: The API base URL
        """
        session = self._load_session()
        session["token"] = token
        session["api_url"] = api_url
        self._write_session(session)

    def get_token(self) -> Optional[str]:
        return self._load_session().get("token")

    def get_api_url(self) -> str:
        """The stored API URL, or the default local server."""
        return self._load_session().get("api_url", DEFAULT_API_URL)

    def clear_token(self) -> None:
        """Forget the stored token but keep the API URL."""
        session = self._load_session()
        session.pop("token", None)
        self._write_session(session)

    def _write_session(self, session: dict) -> None:
        with open(self.session_file, "w") as f:
            json.dump(session, f, indent=2)
        os.chmod(self.session_file, 0o600)

    def _load_session(self) -> dict:
        if not self.session_file.exists():
            return {}

        try:
            with open(self.session_file) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError):
            return {}
