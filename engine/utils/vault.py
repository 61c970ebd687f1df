"""
BOQ Recon settings client
=========================
Resolves engine settings (API keys, model names, limits, file paths) from
HashiCorp Vault, falling back to the process environment.

Usage:
    from utils.vault import secrets

    # Get a secret (throws KeyError if not found and no default)
    api_key = secrets.get("GEMINI_API_KEY")

    # Typed lookups with defaults
    attempts = secrets.get_int("LLM_MAX_ATTEMPTS", 1)

    # Force refresh from Vault
    secrets.refresh()

Vault is only contacted when VAULT_ADDR is set; otherwise every lookup is
served from the environment.
"""

import os
import logging
from typing import Any, Dict, Optional

import hvac

logger = logging.getLogger("BOQRecon")


class VaultClient:
    """
    Vault-backed settings lookup.

    Secrets path structure: secret/boq_recon/{region}/{env}
    All settings for a region/env are stored in a single path.
    """

    def __init__(self):
        self.vault_addr = (os.getenv("VAULT_ADDR") or "").strip()
        self.region = os.getenv("BOQ_RECON_REGION", "default")
        self.env = os.getenv("BOQ_RECON_ENV", "dev")

        self._client: Optional[hvac.Client] = None
        self._cache: Dict[str, Any] = {}
        self._connection_attempted = False

    def _get_client(self) -> Optional[hvac.Client]:
        """Lazy initialization of the Vault client with authentication."""
        if not self.vault_addr:
            return None
        if self._client is not None:
            return self._client
        if self._connection_attempted:
            return None

        self._connection_attempted = True

        try:
            client = hvac.Client(url=self.vault_addr)

            role_id = os.getenv("VAULT_ROLE_ID")
            secret_id = os.getenv("VAULT_SECRET_ID")
            token = os.getenv("VAULT_TOKEN")

            if role_id and secret_id:
                client.auth.approle.login(role_id=role_id, secret_id=secret_id)
                logger.info(
                    "Authenticated to Vault via AppRole for %s/%s", self.region, self.env
                )
            elif token:
                client.token = token
                logger.info(
                    "Authenticated to Vault via token for %s/%s", self.region, self.env
                )
            else:
                logger.warning("VAULT_ADDR set but no Vault credentials configured")
                return None

            self._client = client
        except Exception as e:
            logger.warning("Could not connect to Vault: %s", e)
            self._client = None

        return self._client

    def _secret_path(self) -> str:
        """Build the secret path: boq_recon/{region}/{env}"""
        return f"boq_recon/{self.region}/{self.env}"

    def _fetch_from_vault(self) -> Dict[str, Any]:
        client = self._get_client()
        if client is None:
            return {}

        try:
            path = self._secret_path()
            response = client.secrets.kv.v2.read_secret_version(
                path=path, mount_point="secret"
            )
            values = response["data"]["data"]
            logger.debug("Fetched %d settings from Vault (%s)", len(values), path)
            return values
        except Exception as e:
            logger.warning("Could not fetch settings from Vault: %s", e)
            return {}

    def _load_secrets(self) -> None:
        if not self._cache:
            self._cache = self._fetch_from_vault()

    def _env_fallback(self, key: str) -> Optional[str]:
        for candidate in (key, key.upper(), key.lower()):
            v = os.getenv(candidate)
            if v is not None and v != "":
                return v
        return None

    def get(self, key: str, default: Optional[str] = None) -> str:
        """
        Get a setting from Vault, or from the process environment if not in Vault.

        Raises:
            KeyError: If the key is not found and no default is provided.
        """
        self._load_secrets()

        key_lower = key.lower()
        for k, v in self._cache.items():
            if k.lower() == key_lower:
                return v

        env_val = self._env_fallback(key)
        if env_val is not None:
            return env_val

        if default is not None:
            return default
        raise KeyError(f"Setting '{key}' not found (Vault or env)")

    def get_int(self, key: str, default: int) -> int:
        """Integer setting; malformed values fall back to *default* with a warning."""
        raw = self.get(key, default=str(default))
        try:
            return int(str(raw).strip())
        except (TypeError, ValueError):
            logger.warning("Setting %s=%r is not an integer; using %d", key, raw, default)
            return default

    def refresh(self) -> None:
        """Force refresh all settings from Vault."""
        self._cache = self._fetch_from_vault()
        logger.info("Settings refreshed for %s/%s", self.region, self.env)


# Global singleton instance
secrets = VaultClient()
