"""HTTP client for the managed application's REST API."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import requests

from ..errors import APIError

logger = logging.getLogger(__name__)

DEFAULT_RETRIES = 3
MIN_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 10.0


@dataclass
class Deployment:
    uuid: str
    status: str
    application_uuid: str = ""
    logs: str = ""
    commit: str = ""
    created_at: str = ""

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Deployment":
        return cls(
            uuid=data.get("deployment_uuid") or data.get("uuid") or "",
            status=str(data.get("status") or ""),
            application_uuid=data.get("application_uuid") or "",
            logs=data.get("logs") or "",
            commit=data.get("commit") or data.get("git_commit_sha") or "",
            created_at=data.get("created_at") or "",
        )


@dataclass
class Application:
    uuid: str
    name: str
    status: str
    fqdn: str = ""

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Application":
        return cls(
            uuid=data.get("uuid") or "",
            name=data.get("name") or "",
            status=str(data.get("status") or ""),
            fqdn=data.get("fqdn") or "",
        )


def normalize_base_url(base_url: str) -> str:
    base_url = base_url.rstrip("/")
    if not base_url.endswith("/api/v1"):
        base_url = f"{base_url}/api/v1"
    return base_url


class CoolifyClient:
    """Bearer-token client with exponential backoff on transient failures.

    Connection errors and 5xx responses are retried up to ``retries`` times,
    waiting 1s and doubling up to 10s. Any other non-2xx response raises
    :class:`APIError` immediately.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        retries: int = DEFAULT_RETRIES,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not base_url:
            raise ValueError("API base URL is required")
        if not token:
            raise ValueError("API token is required")
        self.base_url = normalize_base_url(base_url)
        self.retries = retries
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        )
        self._sleep = sleep

    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        delay = MIN_RETRY_DELAY
        last_error = ""

        for attempt in range(self.retries + 1):
            if attempt > 0:
                self._sleep(delay)
                delay = min(delay * 2, MAX_RETRY_DELAY)
            logger.debug("%s %s (attempt %d/%d)", method, url, attempt + 1, self.retries + 1)
            try:
                response = self.session.request(
                    method, url, params=params, json=body, timeout=self.timeout
                )
            except requests.exceptions.RequestException as exc:
                last_error = str(exc)
                logger.warning("Request to %s failed: %s", url, exc)
                continue

            if response.status_code >= 500:
                last_error = f"server error: {response.status_code}"
                continue
            if not 200 <= response.status_code < 300:
                raise APIError(response.status_code, _error_message(response))
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise APIError(response.status_code, f"invalid JSON in response: {exc}") from exc

        raise APIError(0, f"request failed after {self.retries + 1} attempts: {last_error}")

    def get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        return self.request("GET", path, params=params)

    # ------------------------------------------------------------------ endpoints

    def list_deployments(self, application_uuid: str) -> List[Deployment]:
        payload = self.get("/deployments", {"application_uuid": application_uuid}) or []
        if isinstance(payload, dict):
            payload = payload.get("data") or []
        return [Deployment.from_payload(item) for item in payload]

    def get_deployment(self, deployment_uuid: str) -> Deployment:
        return Deployment.from_payload(self.get(f"/deployments/{deployment_uuid}") or {})

    def get_application(self, application_uuid: str) -> Application:
        return Application.from_payload(self.get(f"/applications/{application_uuid}") or {})

    def deploy(self, application_uuid: str, force: bool = False) -> Dict[str, Any]:
        params = {"uuid": application_uuid}
        if force:
            params["force"] = "true"
        return self.get("/deploy", params) or {}

    def health(self) -> bool:
        try:
            self.get("/version")
        except APIError:
            return False
        return True


def _error_message(response: requests.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500] or response.reason or ""
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return json.dumps(data)[:500]


def parse_logs(raw_logs: str) -> str:
    """Visible output lines of a deployment log.

    Logs arrive as a JSON array of entries, sometimes several arrays
    concatenated. Hidden and empty entries are dropped; text that is not JSON
    is returned unchanged.
    """
    if not raw_logs:
        return ""
    try:
        entries = json.loads(raw_logs)
    except json.JSONDecodeError:
        entries = _scan_arrays(raw_logs)
        if entries is None:
            return raw_logs
    if not isinstance(entries, list):
        return raw_logs

    lines = []
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("hidden"):
            continue
        output = entry.get("output")
        if output:
            lines.append(str(output))
    return "\n".join(lines)


def _scan_arrays(text: str) -> Optional[List[Any]]:
    decoder = json.JSONDecoder()
    entries: List[Any] = []
    index = text.find("[")
    while index != -1:
        try:
            value, end = decoder.raw_decode(text, index)
        except json.JSONDecodeError:
            index = text.find("[", index + 1)
            continue
        if isinstance(value, list):
            entries.extend(value)
        index = text.find("[", end)
    return entries or None
