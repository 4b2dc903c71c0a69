"""
Credential store: operator-supplied API keys, looked up per provider.

Last writer wins. Keys are configuration, not contended state, so there
is no locking. Services take a store in their constructor and fall back
to the process-wide `credentials` below.
"""

from __future__ import annotations

import logging
import os

logger = logging.getLogger(__name__)


class CredentialStore:
    def __init__(self, initial: dict[str, str] | None = None, use_env: bool = True):
        self._keys: dict[str, str] = dict(initial or {})
        self._use_env = use_env

    def get(self, provider: str) -> str:
        """Stored key for provider, else $<PROVIDER>_API_KEY, else ""."""
        key = self._keys.get(provider)
        if key:
            return key
        if not self._use_env:
            return ""
        env_name = provider.upper().replace("-", "_") + "_API_KEY"
        return os.getenv(env_name, "")

    def set(self, provider: str, api_key: str) -> None:
        self._keys[provider] = api_key
        logger.debug(f"Credential updated for provider={provider}")

    def clear(self, provider: str | None = None) -> None:
        if provider is None:
            self._keys.clear()
        else:
            self._keys.pop(provider, None)


credentials = CredentialStore()
