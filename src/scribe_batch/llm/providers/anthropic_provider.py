"""Anthropic Messages and Message Batches API provider."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from ...config import DEFAULT_SETTINGS, read_api_key, validate_api_key
from ...errors import TransportFailure, UpstreamUnknown, error_for_status
from ...utils import json_loads

logger = logging.getLogger(__name__)


class AnthropicProvider:
    name = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        settings: Dict[str, Any] | None = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        provider_cfg = dict(DEFAULT_SETTINGS["provider"])
        provider_cfg.update((settings or {}).get("provider", {}))
        self._api_key = api_key if api_key is not None else read_api_key()
        self.base_url = str(provider_cfg["base_url"]).rstrip("/")
        self.anthropic_version = str(provider_cfg["anthropic_version"])
        self.batch_beta = provider_cfg.get("batch_beta")
        self.timeout = provider_cfg.get("request_timeout_seconds")
        self._session = session or requests.Session()

    def _headers(self, batch: bool = False) -> Dict[str, str]:
        # Raises before any network call when the key is absent or malformed.
        key = validate_api_key(self._api_key)
        headers = {
            "x-api-key": key,
            "anthropic-version": self.anthropic_version,
            "content-type": "application/json",
        }
        if batch and self.batch_beta:
            headers["anthropic-beta"] = str(self.batch_beta)
        return headers

    def _send(self, method: str, url: str, headers: Dict[str, str], payload: Any = None) -> requests.Response:
        try:
            res = self._session.request(method, url, headers=headers, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            raise TransportFailure(f"{method} {url} failed: {exc}") from exc

        if not 200 <= res.status_code < 300:
            body = res.text or ""
            error_payload = json_loads(body).get("error")
            if isinstance(error_payload, dict) and error_payload.get("message"):
                body = str(error_payload["message"])
            logger.warning("Anthropic %s %s returned HTTP %s", method, url, res.status_code)
            raise error_for_status(res.status_code, body)
        return res

    @staticmethod
    def _json(res: requests.Response) -> Dict[str, Any]:
        try:
            data = res.json()
        except ValueError as exc:
            raise UpstreamUnknown(f"Non-JSON response body: {exc}", status=res.status_code, body=res.text) from exc
        if not isinstance(data, dict):
            raise UpstreamUnknown("Unexpected response payload", status=res.status_code, body=res.text)
        return data

    def create_message(self, params: Dict[str, Any]) -> Dict[str, Any]:
        res = self._send("POST", f"{self.base_url}/v1/messages", self._headers(), params)
        return self._json(res)

    def create_batch(self, entries: List[Dict[str, Any]]) -> Dict[str, Any]:
        res = self._send(
            "POST",
            f"{self.base_url}/v1/messages/batches",
            self._headers(batch=True),
            {"requests": entries},
        )
        return self._json(res)

    def retrieve_batch(self, batch_id: str) -> Dict[str, Any]:
        res = self._send("GET", f"{self.base_url}/v1/messages/batches/{batch_id}", self._headers(batch=True))
        return self._json(res)

    def fetch_results(self, results_url: str) -> str:
        res = self._send("GET", results_url, self._headers(batch=True))
        return res.text or ""
