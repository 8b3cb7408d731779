"""
Credential storage for license material.

KeychainCredentialStore keeps values in the macOS login keychain via the
`security` CLI. Values are bytes, stored base64-encoded as the password.
"""

import base64
import binascii
import logging
import threading

from clipcutter.core.constants import KEYCHAIN_SERVICE, VERSION_CHECK_TIMEOUT
from clipcutter.core.error_codes import JobError
from clipcutter.core.process_runner import run_simple

logger = logging.getLogger(__name__)

SECURITY_TOOL = "/usr/bin/security"


class KeychainCredentialStore:
    """put/get/delete of byte values keyed by account name."""

    def __init__(self, service: str = KEYCHAIN_SERVICE, tool: str = SECURITY_TOOL,
                 runner=run_simple):
        self.service = service
        self.tool = tool
        self._run = runner

    def _security(self, *args: str):
        return self._run(self.tool, list(args), timeout=VERSION_CHECK_TIMEOUT)

    def get(self, key: str) -> bytes | None:
        try:
            result = self._security("find-generic-password",
                                    "-s", self.service, "-a", key, "-w")
        except JobError as e:
            logger.warning("Keychain read failed: %s", e.code)
            return None
        value = result.output_text.strip()
        if not result.success or not value:
            return None
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Keychain item %s is not valid base64", key)
            return None

    def put(self, key: str, value: bytes) -> bool:
        encoded = base64.b64encode(value).decode('ascii')
        try:
            result = self._security("add-generic-password",
                                    "-s", self.service, "-a", key,
                                    "-w", encoded,
                                    "-U")  # update if exists
        except JobError as e:
            logger.error("Keychain write failed: %s", e.code)
            return False
        if not result.success:
            logger.error("Keychain write failed (rc=%d)", result.exit_code)
        return result.success

    def delete(self, key: str) -> bool:
        try:
            result = self._security("delete-generic-password",
                                    "-s", self.service, "-a", key)
        except JobError:
            return False
        return result.success


class InMemoryCredentialStore:
    """Process-local store for platforms without a keychain."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: dict[str, bytes] = {}

    def get(self, key: str) -> bytes | None:
        with self._lock:
            return self._items.get(key)

    def put(self, key: str, value: bytes) -> bool:
        with self._lock:
            self._items[key] = bytes(value)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None
