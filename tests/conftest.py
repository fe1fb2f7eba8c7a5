"""
Shared test fixtures: fake LLM provider, gateway, engines, FastAPI test client.
"""

from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from flyer_engine.dependencies import EngineServices, get_services
from flyer_engine.main import app
from flyer_engine.models import ImageRef, Profile, Template
from flyer_engine.services.persistence import SaveError
from flyer_engine.services.provider_gateway import ProviderGateway, ToolInvocation
from flyer_engine.services.provider_settings import StaticProviderSettings


# ── Sample Data ─────────────────────────────────────────

SAMPLE_HTML = """<!DOCTYPE html>
<html>
<head><style>.accent { color: #0055aa; border-color: #0055aa; } h1 { font-size: 32px; margin-top: 10px; }</style></head>
<body>
  <h1>{{name}}</h1>
  <p class="phone">(555) 000-0000</p>
  <img class="headshot" src="https://example.com/placeholder.jpg">
  <a href="https://example.com/old">Website</a>
</body>
</html>"""

GENERATED_HTML = """<!DOCTYPE html>
<html>
<body>
  <h1>Jane Doe</h1>
  <p class="phone">(555) 123-4567</p>
</body>
</html>"""

SAMPLE_TEMPLATE = {
    "id": "tpl-1",
    "name": "Open House Flyer",
    "html_content": SAMPLE_HTML,
    "size": "8.5x11 inches",
    "system_prompt": {"prompt_content": "Use the brand navy for accents."},
    "template_prompt": "Keep the headline short.",
    "template_fields": [
        {"field_key": "name", "field_type": "text", "label": "Agent Name", "display_order": 1},
        {"field_key": "headshot", "field_type": "image", "label": "Headshot", "display_order": 2},
    ],
}

SAMPLE_PROFILE = {
    "profile": {"profile_completed": True},
    "fields": [
        {"field_key": "phone", "field_type": "phone", "label": "Phone", "category": "Contact", "display_order": 1},
        {"field_key": "email", "field_type": "email", "label": "Email", "category": "Contact", "display_order": 2},
        {"field_key": "brokerage", "field_type": "text", "label": "Brokerage", "category": "Business", "display_order": 3},
    ],
    "valuesByKey": {"phone": "(555) 123-4567", "email": "", "brokerage": "Acme Realty"},
}


# ── Fakes ───────────────────────────────────────────────

class FakeProvider:
    """Scriptable stand-in for an LLM provider; records every call."""

    def __init__(
        self,
        name: str = "anthropic",
        completion: str = GENERATED_HTML,
        tool_calls: Optional[List[ToolInvocation]] = None,
        chunks: Optional[List[str]] = None,
        error: Optional[Exception] = None,
    ):
        self.name = name
        self.completion = completion
        self.tool_calls = tool_calls or []
        self.chunks = chunks or []
        self.error = error
        self.complete_calls: List[Dict[str, Any]] = []
        self.tool_requests: List[Dict[str, Any]] = []

    async def complete(self, prompt: str, image: Optional[ImageRef] = None) -> str:
        self.complete_calls.append({"prompt": prompt, "image": image})
        if self.error:
            raise self.error
        return self.completion

    async def invoke_tools(self, system_prompt, user_prompt, tools):
        self.tool_requests.append({"system": system_prompt, "user": user_prompt, "tools": tools})
        if self.error:
            raise self.error
        return list(self.tool_calls)

    async def stream(self, prompt: str):
        if self.error:
            raise self.error
        for chunk in self.chunks:
            yield chunk


class FakeSink:
    """In-memory customization sink."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.created: List[Dict[str, Any]] = []
        self.updated: List[tuple] = []

    async def create(self, payload):
        if self.fail:
            raise SaveError("storage unavailable")
        self.created.append(payload)
        return f"cust-{len(self.created)}"

    async def update(self, customization_id, payload):
        if self.fail:
            raise SaveError("storage unavailable")
        self.updated.append((customization_id, payload))


class FakeExporter:
    def __init__(self):
        self.requests = []

    async def export(self, html, name, export_format):
        self.requests.append((name, export_format))
        return b"%PDF-1.4 fake"


# ── Fixtures ────────────────────────────────────────────

@pytest.fixture()
def fake_provider():
    return FakeProvider()


@pytest.fixture()
def gateway(fake_provider):
    return ProviderGateway(
        providers={"anthropic": fake_provider},
        settings_source=StaticProviderSettings("anthropic"),
    )


@pytest.fixture()
def sink():
    return FakeSink()


@pytest.fixture()
def template():
    return Template.from_dict(SAMPLE_TEMPLATE)


@pytest.fixture()
def profile():
    return Profile.from_dict(SAMPLE_PROFILE)


@pytest.fixture()
def services(gateway, sink):
    return EngineServices(
        gateway=gateway,
        sink=sink,
        exporter=FakeExporter(),
        provider_settings=StaticProviderSettings("anthropic"),
    )


@pytest_asyncio.fixture()
async def client(services):
    """FastAPI test client with fake services injected."""
    app.dependency_overrides[get_services] = lambda: services

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
