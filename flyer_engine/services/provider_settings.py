"""
Provider setting store.

Admins pick the LLM vendor at runtime; the choice lives in Redis under a
single key as ``{"provider": "anthropic" | "openai"}``.
"""
import json
from typing import Optional, Protocol

from redis.exceptions import RedisError

from flyer_engine.config import settings
from flyer_engine.logging_config import logger

SUPPORTED_PROVIDERS = ("anthropic", "openai")


class ProviderSettingsSource(Protocol):
    async def get_provider(self) -> Optional[str]: ...


class StaticProviderSettings:
    """Fixed provider choice, used when no settings store is available."""

    def __init__(self, provider: str = "anthropic"):
        self.provider = provider

    async def get_provider(self) -> Optional[str]:
        return self.provider

    async def set_provider(self, provider: str) -> None:
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider: {provider}")
        self.provider = provider


class RedisProviderSettings:
    """Provider choice persisted in Redis.

    ``client`` is the shared ``redis.asyncio`` client built at start-up.
    Read errors propagate so the gateway falls back for that call only.
    """

    def __init__(self, client=None, key: str = None):
        self.client = client
        self.key = key or settings.PROVIDER_SETTING_KEY

    async def get_provider(self) -> Optional[str]:
        if self.client is None:
            return None

        raw = await self.client.get(self.key)
        if not raw:
            return None

        value = json.loads(raw)
        provider = value.get("provider") if isinstance(value, dict) else None
        return provider

    async def set_provider(self, provider: str) -> None:
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported provider: {provider}")

        if self.client is None:
            raise RuntimeError("Redis is not available; provider setting cannot be stored")

        try:
            await self.client.set(self.key, json.dumps({"provider": provider}))
        except RedisError as e:
            logger.warning("Provider setting write failed", error=str(e))
            raise RuntimeError(f"Provider setting could not be stored: {e}") from e

        logger.info("AI provider setting updated", provider=provider)
