"""
Licensing / credits backend client.

Every call has an explicit timeout. Connection problems, timeouts, 5xx and
429 responses are transient and retried by with_retry(); other 4xx
responses are permanent and propagate immediately.
"""

import logging
import platform
import threading
import time
from typing import Callable, Optional, TypeVar

import requests

from clipcutter.core.constants import (
    DEFAULT_API_BASE_URL, API_REQUEST_TIMEOUT, API_MAX_ATTEMPTS,
    API_MAX_BACKOFF_SEC, Endpoints, APP_NAME, APP_VERSION,
)
from clipcutter.core.error_codes import (
    JobCancelled, NetworkTransient, NetworkPermanent, InsufficientCredits,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int) -> float:
    return min(2.0 * attempt, API_MAX_BACKOFF_SEC)


def with_retry(operation: Callable[[], T], max_attempts: int = API_MAX_ATTEMPTS,
               sleep: Callable[[float], None] = time.sleep,
               cancel_event: Optional[threading.Event] = None,
               on_exhausted: Optional[Callable[[NetworkTransient], None]] = None) -> T:
    """
    Call operation until it succeeds, retrying only NetworkTransient.
    on_exhausted runs once with the last error before it is re-raised.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            result = operation()
            if attempt > 1:
                logger.info("Request succeeded on attempt %d", attempt)
            return result
        except NetworkTransient as e:
            logger.warning("Request failed on attempt %d/%d: %s",
                           attempt, max_attempts, e.message)
            if attempt == max_attempts:
                if on_exhausted is not None:
                    on_exhausted(e)
                raise
            delay = backoff_delay(attempt)
            if cancel_event is not None:
                if cancel_event.wait(delay):
                    raise JobCancelled() from e
            else:
                sleep(delay)
    raise AssertionError("unreachable")


def parse_credits(value) -> int:
    """Credit count from a server payload; anything non-numeric is a bad response."""
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise NetworkPermanent(f"Unexpected server response: freeCredits={value!r}") from e


def _message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:300] if resp.text else "No response body"
    if isinstance(body, dict) and body.get('message'):
        return str(body['message'])[:300]
    return str(body)[:300]


class BackendClient:
    """Thin JSON client. One requests.Session per client."""

    def __init__(self, base_url: str = DEFAULT_API_BASE_URL,
                 session: requests.Session | None = None,
                 timeout: float = API_REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "User-Agent": f"{APP_NAME}/{APP_VERSION}",
        })

    def _request(self, method: str, endpoint: str, *,
                 params: dict | None = None, body: dict | None = None) -> requests.Response:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.request(method, url, params=params, json=body,
                                        timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NetworkTransient(f"Request to {endpoint} timed out") from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkTransient(f"Could not reach server for {endpoint}") from e
        except requests.exceptions.RequestException as e:
            raise NetworkTransient(f"Request to {endpoint} failed: {e}") from e

        status = resp.status_code
        if status >= 500 or status == 429:
            raise NetworkTransient(f"Server returned {status} for {endpoint}",
                                   status_code=status)
        if status >= 400:
            raise NetworkPermanent(f"Server returned {status}: {_message(resp)}",
                                   status_code=status)
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> dict:
        try:
            data = resp.json()
        except ValueError as e:
            raise NetworkPermanent("Failed to parse server response JSON",
                                   status_code=resp.status_code) from e
        if not isinstance(data, dict):
            raise NetworkPermanent("Unexpected server response",
                                   status_code=resp.status_code)
        return data

    # ── Endpoints ─────────────────────────────────────────────────────

    def check_device(self, device_id: str) -> dict | None:
        """Device record, or None when the backend does not know the device."""
        try:
            resp = self._request("GET", Endpoints.CHECK_DEVICE,
                                 params={"deviceId": device_id})
        except NetworkPermanent as e:
            if e.status_code == 404:
                return None
            raise
        return self._json(resp).get('data') or None

    def create_device(self, device_id: str) -> dict:
        body = {
            "deviceId": device_id,
            "osVersion": platform.platform(),
            "model": platform.machine() or "Mac",
        }
        return self._json(self._request("POST", Endpoints.CREATE_DEVICE, body=body))

    def update_device(self, device_id: str, license_key: str) -> dict:
        body = {"deviceId": device_id, "license": license_key}
        return self._json(self._request("PUT", Endpoints.UPDATE_DEVICE, body=body))

    def decrement_credits(self, device_id: str) -> int | None:
        """Remaining free credits as reported by the server."""
        try:
            resp = self._request("PUT", Endpoints.DECREMENT_CREDITS,
                                 body={"deviceId": device_id})
        except NetworkPermanent as e:
            if e.status_code == 400:
                raise InsufficientCredits() from e
            raise
        data = self._json(resp).get('data') or {}
        device = data.get('device') or {}
        remaining = device.get('freeCredits', data.get('freeCredits'))
        return parse_credits(remaining) if remaining is not None else None

    def validate_license(self, license_key: str, device_id: str) -> tuple[bool, str]:
        """Returns (valid, message)."""
        try:
            resp = self._request("GET", Endpoints.VALIDATE_LICENSE,
                                 params={"license": license_key, "deviceId": device_id})
        except NetworkPermanent as e:
            if e.status_code is not None and 400 <= e.status_code < 500:
                return False, e.message
            raise
        data = self._json(resp)
        return bool(data.get('success')), str(data.get('message', ''))
