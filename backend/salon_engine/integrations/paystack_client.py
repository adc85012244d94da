"""Minimal Paystack API client used for payment verification."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional, cast

import httpx
from pydantic import SecretStr

logger = logging.getLogger(__name__)


class PaystackError(RuntimeError):
    """Raised when the Paystack API responds with an error."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        *,
        error_body: Any | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_body = error_body


class PaystackUnavailableError(PaystackError):
    """The gateway could not be reached or failed server-side; fallbacks may apply."""


def compute_signature(secret: str | SecretStr, body: bytes) -> str:
    """HMAC-SHA512 hex digest Paystack sends in ``x-paystack-signature``."""
    secret_value = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
    return hmac.new(secret_value.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_signature(secret: str | SecretStr, body: bytes, signature: Optional[str]) -> bool:
    if not signature:
        return False
    secret_value = secret.get_secret_value() if isinstance(secret, SecretStr) else secret
    if not secret_value:
        return False
    return hmac.compare_digest(compute_signature(secret_value, body), signature.strip())


class PaystackClient:
    """Thin client for the Paystack REST API."""

    def __init__(
        self,
        *,
        secret_key: str | SecretStr,
        base_url: str = "https://api.paystack.co",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        secret_value = secret_key.get_secret_value() if isinstance(secret_key, SecretStr) else secret_key
        if not secret_value:
            raise ValueError("Paystack secret key must be provided")

        self._secret_key = secret_value
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """
        Fetch the gateway's view of a transaction.

        Returns the ``data`` object of the response (``status`` is one of
        ``success``, ``failed``, ``abandoned``, ...).

        Raises:
            PaystackUnavailableError: Network failure or 5xx
            PaystackError: Any other API error (unknown reference, bad key)
        """
        if not reference:
            raise ValueError("reference must be provided")
        payload = self.request("GET", f"/transaction/verify/{reference}")
        data = payload.get("data")
        if not payload.get("status") or not isinstance(data, dict):
            raise PaystackError(
                payload.get("message") or "Paystack verification was not successful",
                error_body=payload,
            )
        return cast(Dict[str, Any], data)

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: Dict[str, Any] | None = None,
        params: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        """Perform a raw Paystack API request and return the parsed JSON payload."""

        url = f"{self._base_url}{path}"
        with httpx.Client(
            timeout=self._timeout,
            transport=self._transport,
            headers={
                "Accept": "application/json",
                "Authorization": f"Bearer {self._secret_key}",
            },
        ) as client:
            try:
                response = client.request(method, url, json=json_body, params=params)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                try:
                    error_payload: Any = exc.response.json()
                except json.JSONDecodeError:
                    error_payload = exc.response.text

                logger.error(
                    "Paystack API error %s for %s %s: %s",
                    status,
                    method,
                    path,
                    exc.response.text[:500],
                )
                error_cls = PaystackUnavailableError if status >= 500 else PaystackError
                raise error_cls(
                    message=f"Paystack API responded with status {status}",
                    status_code=status,
                    error_body=error_payload,
                ) from exc
            except httpx.RequestError as exc:
                logger.error("Paystack request failure for %s %s: %s", method, path, str(exc))
                raise PaystackUnavailableError("Failed to reach Paystack API") from exc

        try:
            return cast(Dict[str, Any], response.json())
        except json.JSONDecodeError as exc:
            logger.error("Invalid JSON from Paystack for %s %s: %s", method, path, response.text)
            raise PaystackUnavailableError("Received malformed JSON from Paystack") from exc
