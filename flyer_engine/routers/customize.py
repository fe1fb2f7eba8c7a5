"""
AI customization API router.

Stateless endpoints over the two edit strategies, the streaming variant and
the copy-paste prompt compiler.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import json

from slowapi import Limiter
from slowapi.util import get_remote_address

from flyer_engine.dependencies import EngineServices, get_services
from flyer_engine.logging_config import logger
from flyer_engine.models import ProfileField, Template, TemplateField
from flyer_engine.services.customization_prompts import build_prompt_only
from flyer_engine.services.field_merge import CustomizationValidationError
from flyer_engine.services.llm_response_handler import LLMResponseHandler
from flyer_engine.services.prompt_compiler import compile_prompt
from flyer_engine.services.provider_gateway import ProviderError

router = APIRouter()
limiter = Limiter(key_func=get_remote_address)


class CustomizeRequest(BaseModel):
    """Request model for full-document customization"""
    html_content: Optional[str] = None
    fields: List[Dict[str, Any]] = []
    values: Dict[str, Optional[str]] = {}
    user_prompt: Optional[str] = None
    image: Optional[str] = None


class CustomizeResponse(BaseModel):
    html: str


class EditRequest(BaseModel):
    """Request model for tool-based editing"""
    html_content: Optional[str] = None
    user_prompt: Optional[str] = None


class EditResponse(BaseModel):
    html: str
    changes: List[Dict[str, Any]] = []
    message: Optional[str] = None


class StreamRequest(BaseModel):
    html_content: Optional[str] = None
    user_prompt: Optional[str] = None


class CompilePromptRequest(BaseModel):
    """Request model for the copy-paste prompt"""
    template: Dict[str, Any]
    template_field_values: Dict[str, Optional[str]] = {}
    profile_fields: List[Dict[str, Any]] = []
    profile_values: Dict[str, Optional[str]] = {}
    system_prompt: Optional[str] = None
    template_prompt: Optional[str] = None


class CompilePromptResponse(BaseModel):
    prompt: str


def _clean_values(values: Dict[str, Optional[str]]) -> Dict[str, str]:
    return {k: v for k, v in values.items() if v is not None}


@router.post("/ai/customize", response_model=CustomizeResponse)
@limiter.limit("30/minute")
async def customize_template(
    request: Request,
    data: CustomizeRequest,
    services: EngineServices = Depends(get_services),
):
    """
    Personalize HTML with field values and/or a free-text instruction.

    Returns the original HTML when the model's output is degenerate.
    """
    services.require_engines()
    try:
        fields = [TemplateField.from_dict(f) for f in data.fields]
        html = await services.merge_engine.apply(
            data.html_content or "",
            fields,
            _clean_values(data.values),
            data.user_prompt,
            data.image,
        )
        return CustomizeResponse(html=html)

    except CustomizationValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid field definition: {e}")
    except ProviderError as e:
        logger.error("AI customization error", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to customize template")


@router.post("/ai/edit", response_model=EditResponse)
@limiter.limit("60/minute")
async def edit_template(
    request: Request,
    data: EditRequest,
    services: EngineServices = Depends(get_services),
):
    """
    Apply a simple instruction through the literal edit tools.

    Zero tool calls is not an error: the HTML comes back unchanged with
    ``message="No changes detected"``.
    """
    services.require_engines()
    try:
        result = await services.edit_engine.edit(data.html_content or "", data.user_prompt or "")
        return EditResponse(html=result.html, changes=result.changes(), message=result.message)

    except CustomizationValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        logger.error("AI edit error", error=str(e))
        raise HTTPException(status_code=500, detail=f"Failed to edit: {e}")


@router.post("/ai/customize-stream")
@limiter.limit("30/minute")
async def customize_template_stream(
    request: Request,
    data: StreamRequest,
    services: EngineServices = Depends(get_services),
):
    """
    Stream a free-text customization as Server-Sent Events.

    Emits ``{"chunk": ...}`` events, then ``{"done": true, "html": ...}`` or
    ``{"error": ...}``.
    """
    services.require_engines()
    if not data.html_content or not data.user_prompt:
        raise HTTPException(status_code=400, detail="HTML content and prompt are required")

    prompt = build_prompt_only(data.html_content, data.user_prompt)

    async def event_stream():
        full_response = ""
        try:
            async for chunk in services.gateway.stream(prompt):
                full_response += chunk
                yield f"data: {json.dumps({'chunk': chunk})}\n\n"

            cleaned = LLMResponseHandler.clean_html(full_response)
            yield f"data: {json.dumps({'done': True, 'html': cleaned})}\n\n"

        except ProviderError as e:
            logger.error("Customization stream error", error=str(e))
            yield f"data: {json.dumps({'error': str(e)})}\n\n"

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@router.post("/prompt/compile", response_model=CompilePromptResponse)
async def compile_personalization_prompt(data: CompilePromptRequest):
    """Build the copy-paste prompt for an external chat AI. No provider call."""
    try:
        template = Template.from_dict(data.template)
        profile_fields = [ProfileField.from_dict(f) for f in data.profile_fields]
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid template or field definition: {e}")

    if not template.html_content:
        raise HTTPException(status_code=400, detail="HTML content is required")

    prompt = compile_prompt(
        template,
        _clean_values(data.template_field_values),
        profile_fields,
        _clean_values(data.profile_values),
        system_prompt=data.system_prompt,
        template_prompt=data.template_prompt,
    )
    return CompilePromptResponse(prompt=prompt)
