"""OS keychain integration for provider API keys."""

from __future__ import annotations

import logging
import os

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)

_SERVICE_NAME = "lyz"

_REQUIRE_AUTH = os.getenv("REQUIRE_AUTH", "").lower() == "true"

PROVIDER_KEY_NAMES = {
    "openai": "openai_api_key",
    "anthropic": "anthropic_api_key",
    "google": "google_api_key",
}


class KeychainManager:
    """Store and retrieve API keys via OS keychain, with in-memory fallback.

    The fallback is only used on desktops without a keyring backend. Web
    mode reads keys from the environment instead (see api.settings_store).
    """

    def __init__(self, use_keyring: bool = True) -> None:
        self._available = False
        self._fallback: dict[str, str] = {}
        if not use_keyring:
            return
        try:
            keyring.get_credential(_SERVICE_NAME, None)
            self._available = True
            logger.info("OS keychain is available")
        except (KeyringError, RuntimeError) as e:
            if _REQUIRE_AUTH:
                raise RuntimeError(
                    "OS keychain unavailable in web mode (REQUIRE_AUTH=true); "
                    "refusing to keep secrets in memory"
                ) from e
            logger.warning(
                "OS keychain unavailable; API keys will be stored in memory only"
            )

    @property
    def available(self) -> bool:
        return self._available

    def get_key(self, name: str) -> str | None:
        if self._available:
            try:
                value = keyring.get_password(_SERVICE_NAME, name)
                if value is not None:
                    return value
            except KeyringError:
                logger.warning("Failed to read %s from keychain", name)
        return self._fallback.get(name)

    def set_key(self, name: str, value: str) -> None:
        if self._available:
            try:
                keyring.set_password(_SERVICE_NAME, name, value)
                return
            except KeyringError:
                logger.warning("Failed to write to keychain; using fallback")
        self._fallback[name] = value

    def delete_key(self, name: str) -> None:
        if self._available:
            try:
                keyring.delete_password(_SERVICE_NAME, name)
            except KeyringError:
                pass  # not stored
        self._fallback.pop(name, None)

    # Convenience methods

    def get_provider_key(self, provider: str) -> str | None:
        return self.get_key(PROVIDER_KEY_NAMES[provider])

    def set_provider_key(self, provider: str, value: str) -> None:
        self.set_key(PROVIDER_KEY_NAMES[provider], value)

    def delete_provider_key(self, provider: str) -> None:
        self.delete_key(PROVIDER_KEY_NAMES[provider])


_keychain_instance: KeychainManager | None = None


def get_keychain() -> KeychainManager:
    """Return the module-level KeychainManager singleton."""
    global _keychain_instance
    if _keychain_instance is None:
        _keychain_instance = KeychainManager()
    return _keychain_instance
