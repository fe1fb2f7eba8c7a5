"""
Admin settings router: the runtime LLM provider switch.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from flyer_engine.config import settings
from flyer_engine.dependencies import EngineServices, get_services
from flyer_engine.logging_config import logger

router = APIRouter(prefix="/settings")


class ProviderSetting(BaseModel):
    provider: str


@router.get("/ai-provider")
async def get_ai_provider(services: EngineServices = Depends(get_services)):
    try:
        provider = await services.provider_settings.get_provider()
    except Exception as e:
        logger.warning("Could not read AI provider setting", error=str(e))
        provider = None

    return {
        "key": "ai_provider",
        "value": {"provider": provider or settings.DEFAULT_AI_PROVIDER},
    }


@router.put("/ai-provider")
async def update_ai_provider(data: ProviderSetting, services: EngineServices = Depends(get_services)):
    """Switch the provider for subsequent calls. Calls already running keep theirs."""
    try:
        await services.provider_settings.set_provider(data.provider)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))

    return {"key": "ai_provider", "value": {"provider": data.provider}}
