"""
Export hand-off to the headless-browser render service.
"""
import re
from enum import Enum

import httpx

from flyer_engine.config import settings
from flyer_engine.logging_config import logger


class ExportFormat(Enum):
    PDF = "pdf"
    PNG = "png"
    HTML = "html"


MEDIA_TYPES = {
    ExportFormat.PDF: "application/pdf",
    ExportFormat.PNG: "image/png",
    ExportFormat.HTML: "text/html",
}


class ExportError(Exception):
    """The render service could not produce the requested file."""


def export_filename(name: str) -> str:
    """Customization name with non-alphanumerics replaced, lower-cased."""
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE).lower() or "design"


class RenderServiceExporter:
    """Posts the final HTML to the render service and returns file bytes."""

    ENDPOINTS = {
        ExportFormat.PDF: "/pdf",
        ExportFormat.PNG: "/screenshot",
    }

    def __init__(self, base_url: str = None, timeout: float = 60.0):
        self.base_url = (base_url or settings.PLAYWRIGHT_SERVICE_URL).rstrip("/")
        self.timeout = timeout

    async def export(self, html: str, name: str, export_format: ExportFormat) -> bytes:
        if export_format is ExportFormat.HTML:
            return html.encode("utf-8")

        filename = export_filename(name)
        logger.info("Requesting export", format=export_format.value, filename=filename)

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}{self.ENDPOINTS[export_format]}",
                    json={"html": html, "filename": filename},
                )
        except httpx.RequestError as e:
            logger.error("Render service unreachable", error=str(e))
            raise ExportError(f"Failed to generate {export_format.value.upper()}") from e

        if response.status_code != 200:
            logger.error("Render service error", status=response.status_code)
            raise ExportError(f"Failed to generate {export_format.value.upper()}")

        return response.content
