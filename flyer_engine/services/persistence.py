"""
Customization persistence sink.

The engine only produces the save payload; storage belongs to the
customizations CRUD API, reached over HTTP.
"""
from typing import Any, Dict, Optional, Protocol

import httpx

from flyer_engine.config import settings
from flyer_engine.logging_config import logger


class SaveError(Exception):
    """Persisting a customization failed."""


class CustomizationSink(Protocol):
    async def create(self, payload: Dict[str, Any]) -> str: ...

    async def update(self, customization_id: str, payload: Dict[str, Any]) -> None: ...


class HttpCustomizationSink:
    """Create/update customizations through the CRUD API."""

    def __init__(self, base_url: str = None, timeout: float = 30.0, headers: Optional[Dict[str, str]] = None):
        self.base_url = (base_url or settings.CUSTOMIZATIONS_API_URL).rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}

    async def create(self, payload: Dict[str, Any]) -> str:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}/customizations",
                json=payload,
                headers=self.headers,
            )
        result = self._check(response)

        customization_id = (result.get("data") or {}).get("id")
        if not customization_id:
            raise SaveError("Save response did not include a customization id")

        logger.info("Customization created", customization_id=customization_id)
        return str(customization_id)

    async def update(self, customization_id: str, payload: Dict[str, Any]) -> None:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.put(
                f"{self.base_url}/customizations/{customization_id}",
                json=payload,
                headers=self.headers,
            )
        self._check(response)
        logger.info("Customization updated", customization_id=customization_id)

    @staticmethod
    def _check(response: httpx.Response) -> Dict[str, Any]:
        try:
            result = response.json()
        except ValueError:
            result = {}

        if response.status_code >= 400:
            raise SaveError(result.get("error") or f"Failed to save (HTTP {response.status_code})")
        return result
