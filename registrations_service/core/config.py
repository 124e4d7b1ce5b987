"""
Configuration management for Registrations Service.
Uses Zero Python SDK for secure configuration.
"""

import os
import asyncio
import concurrent.futures
from urllib.parse import quote_plus
from typing import Dict, Any, Optional
import logging
from zero_python_sdk import zero

logger = logging.getLogger(__name__)


class ZeroSecretsManager:
    """
    Zero secrets client using the official Zero Python SDK.
    Secrets are fetched once and cached for the lifetime of the process.
    """

    def __init__(self, zero_token: str, caller_name: str = "eventhorizon"):
        self.zero_token = zero_token
        self.caller_name = caller_name
        self._cache: Dict[str, Any] = {}
        self._secrets = None

    async def _fetch_secrets(self):
        """Fetch secrets from Zero if not already cached."""
        if self._secrets is None:
            try:
                loop = asyncio.get_running_loop()
                with concurrent.futures.ThreadPoolExecutor() as executor:
                    self._secrets = await loop.run_in_executor(
                        executor,
                        lambda: zero(
                            token=self.zero_token,
                            pick=["eventhorizon"],
                            caller_name=self.caller_name
                        ).fetch()
                    )
                logger.info("Successfully fetched secrets from Zero")
            except Exception as e:
                logger.error(f"Failed to fetch secrets from Zero: {e}")
                self._secrets = {}

    def _normalize_key(self, key: str) -> str:
        """Normalize a key to lowercase and replace underscores with hyphens."""
        return key.lower().replace("_", "-")

    async def get_secret(self, key: str) -> Optional[str]:
        """
        Get a secret value by key.

        Args:
            key: The secret key to retrieve

        Returns:
            Secret value or None if not found
        """
        key = self._normalize_key(key)
        if key in self._cache:
            return self._cache[key]

        await self._fetch_secrets()
        secret_value = (self._secrets or {}).get("eventhorizon", {}).get(key)

        if secret_value:
            self._cache[key] = secret_value

        return secret_value

    async def close(self):
        """Drop cached secrets."""
        self._cache.clear()
        self._secrets = None


class RegistrationsConfig:
    """
    Registrations Service configuration manager.
    Every getter falls back to a development default when the secret is missing.
    """

    def __init__(self):
        self.zero_token = os.getenv("ZERO_TOKEN")
        if not self.zero_token:
            raise ValueError("ZERO_TOKEN environment variable is required")

        self.secrets_manager = ZeroSecretsManager(self.zero_token)

    async def _get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return await self.secrets_manager.get_secret(key) or default

    async def get_database_url(self) -> str:
        """Get the database connection URL."""
        host = await self._get("DB_HOST", "localhost")
        port = await self._get("DB_PORT", "5432")
        name = await self._get("DB_NAME", "eventhorizon")
        user = await self._get("DB_USER", "eventhorizon")
        password = await self._get("DB_PASSWORD", "eventhorizon123")

        return f"postgresql://{user}:{quote_plus(password)}@{host}:{port}/{name}"

    async def get_redis_url(self) -> str:
        """Get the Redis connection URL."""
        host = await self._get("REDIS_HOST", "localhost")
        port = await self._get("REDIS_PORT", "6379")
        password = await self._get("REDIS_PASSWORD")
        use_tls = await self._get("REDIS_USE_TLS")

        protocol = "rediss://" if use_tls == "true" else "redis://"

        if password:
            return f"{protocol}:{quote_plus(password)}@{host}:{port}"
        return f"{protocol}{host}:{port}"

    async def get_jwt_secret(self) -> str:
        """Get JWT secret key."""
        return await self._get("JWT_SECRET", "your-secret-key-change-in-production")

    async def get_jwt_algorithm(self) -> str:
        """Get JWT algorithm."""
        return await self._get("JWT_ALGORITHM", "HS256")

    async def get_cache_config(self) -> Dict[str, int]:
        """Get cache TTL configuration."""
        return {
            "availability_ttl": int(await self._get("CACHE_TTL_AVAILABILITY", "30")),
        }

    async def get_consistency_config(self) -> Dict[str, Any]:
        """Get locking configuration for capacity-sensitive writes."""
        return {
            "lock_timeout_seconds": int(await self._get("LOCK_TIMEOUT_SECONDS", "30")),
            "lock_blocking_timeout_seconds": int(await self._get("LOCK_BLOCKING_TIMEOUT_SECONDS", "10")),
        }

    async def get_registration_config(self) -> Dict[str, Any]:
        """Get registration-specific configuration."""
        return {
            "invite_code_length": int(await self._get("INVITE_CODE_LENGTH", "6")),
            "invite_code_max_attempts": int(await self._get("INVITE_CODE_MAX_ATTEMPTS", "10")),
            "default_currency": await self._get("DEFAULT_CURRENCY", "INR"),
            "enable_notifications": await self._get("ENABLE_NOTIFICATIONS") != "false",
        }

    async def get_database_config(self) -> Dict[str, Any]:
        """Get database pool configuration."""
        return {
            "pool_size": int(await self._get("DB_POOL_SIZE", "20")),
            "max_overflow": int(await self._get("DB_MAX_OVERFLOW", "30")),
            "pool_timeout": int(await self._get("DB_POOL_TIMEOUT", "30")),
            "pool_recycle": int(await self._get("DB_POOL_RECYCLE", "3600")),
            "statement_timeout_seconds": int(await self._get("DB_STATEMENT_TIMEOUT_SECONDS", "60")),
        }

    async def close(self):
        """Close the secrets manager."""
        await self.secrets_manager.close()


# Global config instance
config = RegistrationsConfig()
