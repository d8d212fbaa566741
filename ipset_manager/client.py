"""
HTTP client for the ipset-manager API, used by the CLI.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .core.logging_config import get_logger
from .core.records import Record

logger = get_logger(__name__)


def _set_path(set_name: str) -> str:
    return f"/sets/{quote(set_name, safe='')}"


class ApiError(Exception):
    """Raised for transport failures and non-2xx responses."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"{status_code}: {message}" if status_code else message)


class ApiClient:
    """Thin wrapper over the REST endpoints."""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: int = 10):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        headers = kwargs.pop("headers", {})
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        url = f"{self.base_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = requests.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise ApiError(0, f"failed to connect to {self.base_url}: {e}") from e

        if response.status_code >= 400:
            raise ApiError(response.status_code, self._error_message(response))
        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text or response.reason
        if isinstance(payload, dict):
            return str(payload.get("error") or payload.get("detail") or payload)
        return str(payload)

    def login(self, api_key: str) -> str:
        response = self._request("POST", "/login", json={"api_key": api_key})
        self.token = response.json()["token"]
        return self.token

    def list_records(self) -> List[Record]:
        return [Record.model_validate(r) for r in self._request("GET", "/records").json()]

    def get_record(self, record_id: int) -> Record:
        return Record.model_validate(self._request("GET", f"/records/{record_id}").json())

    def create_record(self, fields: Dict[str, Any]) -> Record:
        return Record.model_validate(self._request("POST", "/records", json=fields).json())

    def update_record(self, record_id: int, fields: Dict[str, Any]) -> Record:
        response = self._request("PUT", f"/records/{record_id}", json=fields)
        return Record.model_validate(response.json())

    def delete_record(self, record_id: int) -> None:
        self._request("DELETE", f"/records/{record_id}")

    def search(self, query: str) -> List[Record]:
        response = self._request("GET", "/records/search", params={"q": query})
        return [Record.model_validate(r) for r in response.json()]

    def import_records(
        self,
        records: List[Record],
        context_prefix: Optional[str] = None,
        dry_run: bool = False,
    ) -> Dict[str, Any]:
        payload = {
            "records": [
                r.model_dump(exclude={"id", "created_at", "updated_at"}) for r in records
            ],
            "context_prefix": context_prefix,
            "dry_run": dry_run,
        }
        return self._request("POST", "/records/import", json=payload).json()

    def list_sets(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/sets").json()

    def get_set(self, set_name: str) -> Dict[str, Any]:
        return self._request("GET", _set_path(set_name)).json()

    def delete_set(self, set_name: str) -> int:
        return self._request("DELETE", _set_path(set_name)).json()["deleted"]

    def export_set(self, set_name: str, fmt: str = "ipset") -> str:
        path = f"{_set_path(set_name)}/export"
        return self._request("GET", path, params={"format": fmt}).text

    def export(self, group_by: str = "set", script: bool = False) -> str:
        params = {"group_by": group_by, "script": str(script).lower()}
        return self._request("GET", "/export", params=params).text
