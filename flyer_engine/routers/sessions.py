"""
Customization session API router.

Each session wraps one CustomizationController held in memory; history,
autosave and export all go through the controller.
"""
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import uuid

from slowapi import Limiter
from slowapi.util import get_remote_address

from flyer_engine.agents.customization_controller import (
    CustomizationController,
    TurnRejectedError,
)
from flyer_engine.dependencies import EngineServices, get_services
from flyer_engine.logging_config import logger
from flyer_engine.models import ChangeLogItem, Profile, PromptHistoryItem, Template
from flyer_engine.services.export import MEDIA_TYPES, ExportError, ExportFormat, export_filename
from flyer_engine.services.persistence import SaveError

router = APIRouter(prefix="/customizations/sessions")
limiter = Limiter(key_func=get_remote_address)


class ExistingCustomization(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    values: Dict[str, Optional[str]] = {}
    rendered_html: Optional[str] = None
    prompt_history: List[Dict[str, Any]] = []
    change_log: List[Dict[str, Any]] = []


class OpenSessionRequest(BaseModel):
    """Request model for opening a customization session"""
    template: Dict[str, Any]
    profile: Optional[Dict[str, Any]] = None
    customization: Optional[ExistingCustomization] = None


class TurnRequest(BaseModel):
    prompt: Optional[str] = None
    image: Optional[str] = None
    field_values: Dict[str, Optional[str]] = {}


class ExportRequest(BaseModel):
    format: str = "pdf"


def _session_response(session_id: str, controller: CustomizationController) -> Dict[str, Any]:
    return {"session_id": session_id, **controller.to_dict()}


def _get_session(services: EngineServices, session_id: str) -> CustomizationController:
    controller = services.sessions.get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return controller


@router.post("")
async def open_session(data: OpenSessionRequest, services: EngineServices = Depends(get_services)):
    """Open a session and run the load step (may auto-apply the profile)."""
    services.require_engines()
    try:
        template = Template.from_dict(data.template)
        profile = Profile.from_dict(data.profile) if data.profile is not None else None
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid template or profile: {e}")

    if not template.html_content:
        raise HTTPException(status_code=400, detail="Template has no HTML content")

    existing = data.customization or ExistingCustomization()
    controller = CustomizationController(
        template,
        services.merge_engine,
        services.edit_engine,
        services.sink,
        profile=profile,
        customization_id=existing.id,
        name=existing.name,
        values={k: v for k, v in existing.values.items() if v is not None},
        rendered_html=existing.rendered_html,
        prompt_history=[PromptHistoryItem.from_dict(p) for p in existing.prompt_history],
        change_log=[ChangeLogItem.from_dict(c) for c in existing.change_log],
    )
    await controller.load()

    session_id = str(uuid.uuid4())
    services.sessions[session_id] = controller
    logger.info("Customization session opened", session_id=session_id, phase=controller.phase.value)
    return _session_response(session_id, controller)


@router.get("/{session_id}")
async def get_session(session_id: str, services: EngineServices = Depends(get_services)):
    return _session_response(session_id, _get_session(services, session_id))


@router.post("/{session_id}/turns")
@limiter.limit("30/minute")
async def submit_turn(
    request: Request,
    session_id: str,
    data: TurnRequest,
    services: EngineServices = Depends(get_services),
):
    """
    Run one chat turn.

    Engine failures come back as ``success: false`` with the previous HTML;
    a turn sent while another is running gets 409.
    """
    controller = _get_session(services, session_id)
    try:
        result = await controller.handle_turn(
            data.prompt,
            data.image,
            {k: v for k, v in data.field_values.items() if v is not None},
        )
    except TurnRejectedError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": result.success,
        "html": result.html,
        "route": result.route.value if result.route else None,
        "message": result.message,
        "changes": result.changes,
        "session": _session_response(session_id, controller),
    }


@router.post("/{session_id}/save")
async def save_session(session_id: str, services: EngineServices = Depends(get_services)):
    controller = _get_session(services, session_id)
    try:
        customization_id = await controller.save()
    except SaveError as e:
        logger.error("Manual save failed", session_id=session_id, error=str(e))
        raise HTTPException(status_code=502, detail=f"Failed to save: {e}")

    return {"success": True, "customization_id": customization_id}


@router.post("/{session_id}/export")
async def export_session(
    session_id: str,
    data: ExportRequest,
    services: EngineServices = Depends(get_services),
):
    """Export the current document as pdf, png or html."""
    controller = _get_session(services, session_id)
    try:
        export_format = ExportFormat(data.format.lower())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unsupported export format: {data.format}")

    try:
        content = await controller.export(services.exporter, export_format)
    except ExportError as e:
        raise HTTPException(status_code=502, detail=str(e))

    filename = f"{export_filename(controller.name)}.{export_format.value}"
    return Response(
        content=content,
        media_type=MEDIA_TYPES[export_format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/{session_id}")
async def close_session(session_id: str, services: EngineServices = Depends(get_services)):
    """Close a session, flushing any pending autosave."""
    controller = _get_session(services, session_id)
    await controller.close()
    del services.sessions[session_id]
    logger.info("Customization session closed", session_id=session_id)
    return {"success": True, "customization_id": controller.customization_id}
