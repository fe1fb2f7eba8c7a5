"""
Service wiring for the API.

Provider clients, engines and sinks are built once at start-up and handed to
routes through ``get_services``; tests override that dependency with fakes.
"""
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import HTTPException, Request

from flyer_engine.agents.customization_controller import CustomizationController
from flyer_engine.agents.editing_agent import EditingAgent
from flyer_engine.logging_config import logger
from flyer_engine.services.export import RenderServiceExporter
from flyer_engine.services.field_merge import FieldValueMergeEngine
from flyer_engine.services.persistence import CustomizationSink, HttpCustomizationSink
from flyer_engine.services.provider_gateway import ProviderGateway, build_gateway
from flyer_engine.services.provider_settings import ProviderSettingsSource, RedisProviderSettings


@dataclass
class EngineServices:
    gateway: Optional[ProviderGateway]
    sink: CustomizationSink
    exporter: RenderServiceExporter
    provider_settings: ProviderSettingsSource
    merge_engine: Optional[FieldValueMergeEngine] = None
    edit_engine: Optional[EditingAgent] = None
    sessions: Dict[str, CustomizationController] = field(default_factory=dict)

    def __post_init__(self):
        if self.gateway is not None:
            self.merge_engine = self.merge_engine or FieldValueMergeEngine(self.gateway)
            self.edit_engine = self.edit_engine or EditingAgent(self.gateway)

    def require_engines(self) -> None:
        if self.gateway is None:
            raise HTTPException(status_code=503, detail="No AI provider is configured")


def build_services(
    gateway: ProviderGateway = None,
    sink: CustomizationSink = None,
    exporter: RenderServiceExporter = None,
    provider_settings: ProviderSettingsSource = None,
    redis_client=None,
) -> EngineServices:
    provider_settings = provider_settings or RedisProviderSettings(redis_client)

    if gateway is None:
        try:
            gateway = build_gateway(settings_source=provider_settings)
        except ValueError as e:
            logger.error("AI providers unavailable", error=str(e))

    return EngineServices(
        gateway=gateway,
        sink=sink or HttpCustomizationSink(),
        exporter=exporter or RenderServiceExporter(),
        provider_settings=provider_settings,
    )


def get_services(request: Request) -> EngineServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services
