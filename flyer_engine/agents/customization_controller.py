"""
Customization Controller - lifecycle of one user editing one template.

Loading → NeedsProfile | ReadyNoProfile | AutoApplying → Interactive ⇄ Saving

The controller owns the working document and its append-only history. Every
turn routes to either the tool-based EditingAgent (plain text tweaks) or the
FieldValueMergeEngine (images, field values). Engine failures never escape a
turn: the user gets a system message and keeps the last good document.
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from flyer_engine.agents.editing_agent import EditingAgent
from flyer_engine.config import settings
from flyer_engine.logging_config import logger
from flyer_engine.models import (
    ChangeLogItem,
    HistoryRole,
    ImageRef,
    Profile,
    PromptHistoryItem,
    Template,
    TemplateField,
    has_value,
)
from flyer_engine.services.autosave import Debouncer
from flyer_engine.services.export import ExportFormat, RenderServiceExporter
from flyer_engine.services.field_merge import FieldValueMergeEngine
from flyer_engine.services.history import AppendOnlyLog
from flyer_engine.services.persistence import CustomizationSink, SaveError


BOOTSTRAP_PROMPT = "Apply my profile information to personalize this template"
BOOTSTRAP_CHANGE = "Applied profile information"
SUCCESS_MESSAGE = "Template updated successfully"
FAILURE_MESSAGE = "Failed to generate. Please try again."
NO_CHANGES_MESSAGE = "No changes detected"
IMAGE_ONLY_PROMPT = "(Image attached)"
FIELDS_ONLY_PROMPT = "(Field values updated)"


class CustomizationPhase(Enum):
    LOADING = "loading"
    NEEDS_PROFILE = "needs_profile"
    READY_NO_PROFILE = "ready_no_profile"
    AUTO_APPLYING = "auto_applying"
    INTERACTIVE = "interactive"
    SAVING = "saving"


class TurnRoute(Enum):
    TOOL_EDIT = "tool_edit"
    FIELD_MERGE = "field_merge"


class TurnRejectedError(Exception):
    """The controller cannot accept a turn right now."""


def choose_route(
    prompt_text: Optional[str],
    image: Union[ImageRef, str, None],
    field_values: Optional[Mapping[str, str]],
) -> TurnRoute:
    """Plain text with no image and no field values takes the fast tool path."""
    has_prompt = bool(prompt_text and prompt_text.strip())
    has_fields = any(has_value(v) for v in (field_values or {}).values())
    if has_prompt and not image and not has_fields:
        return TurnRoute.TOOL_EDIT
    return TurnRoute.FIELD_MERGE


def describe_change(prompt_text: str, limit: int = None) -> str:
    limit = settings.CHANGE_DESCRIPTION_MAX_CHARS if limit is None else limit
    if prompt_text:
        shown = prompt_text if len(prompt_text) <= limit else prompt_text[:limit] + "..."
        return f'Applied: "{shown}"'
    return "Regenerated with field values"


@dataclass
class CustomizationState:
    """The single mutable document plus its append-only logs"""
    working_html: str
    prompt_history: AppendOnlyLog = field(default_factory=AppendOnlyLog)
    change_log: AppendOnlyLog = field(default_factory=AppendOnlyLog)


@dataclass
class TurnResult:
    success: bool
    html: str
    route: Optional[TurnRoute] = None
    message: str = ""
    changes: List[Dict[str, Any]] = field(default_factory=list)


class CustomizationController:
    """Coordinates engines, history, autosave and export for one session."""

    def __init__(
        self,
        template: Template,
        merge_engine: FieldValueMergeEngine,
        edit_engine: EditingAgent,
        sink: CustomizationSink,
        profile: Optional[Profile] = None,
        customization_id: Optional[str] = None,
        name: Optional[str] = None,
        values: Optional[Mapping[str, str]] = None,
        rendered_html: Optional[str] = None,
        prompt_history: Iterable[PromptHistoryItem] = (),
        change_log: Iterable[ChangeLogItem] = (),
        autosave_delay: float = None,
    ):
        self.template = template
        self.merge_engine = merge_engine
        self.edit_engine = edit_engine
        self.sink = sink
        self.profile = profile
        self.customization_id = customization_id
        self.name = name or f"My {template.name}"

        self.values: Dict[str, str] = template.default_values()
        self.values.update(values or {})

        self.state = CustomizationState(
            working_html=rendered_html or template.html_content,
            prompt_history=AppendOnlyLog(prompt_history),
            change_log=AppendOnlyLog(change_log),
        )
        self._has_rendered = bool(rendered_html)

        self.phase = CustomizationPhase.LOADING
        self.dirty = False
        self.auto_applied = False
        self._turn_in_flight = False
        self._revision = 0
        self._save_lock = asyncio.Lock()
        self._autosave = Debouncer(
            settings.AUTOSAVE_DELAY_SECONDS if autosave_delay is None else autosave_delay,
            self._autosave_now,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def working_html(self) -> str:
        return self.state.working_html

    @property
    def fields(self) -> List[TemplateField]:
        """Template fields plus profile fields not already declared by the template."""
        declared = {f.field_key for f in self.template.fields}
        profile_fields = self.profile.fields if self.profile else []
        return list(self.template.fields) + [f for f in profile_fields if f.field_key not in declared]

    def _transition(self, phase: CustomizationPhase) -> None:
        logger.info("Customization phase", template_id=self.template.id, phase=phase.value)
        self.phase = phase

    async def load(self) -> CustomizationPhase:
        """Decide the entry state, bootstrapping with profile values when due."""
        if self.profile is not None and not self.profile.completed:
            self._transition(CustomizationPhase.NEEDS_PROFILE)
            return self.phase

        if self.profile is not None and self.profile.has_values and not self._has_rendered:
            self._transition(CustomizationPhase.AUTO_APPLYING)
            await self._auto_apply()
        elif self.profile is None or not self.profile.has_values:
            self._transition(CustomizationPhase.READY_NO_PROFILE)

        self._transition(CustomizationPhase.INTERACTIVE)
        return self.phase

    async def _auto_apply(self) -> None:
        try:
            html = await self.merge_engine.apply(
                self.template.html_content,
                self.profile.fields,
                self.profile.values_by_key,
                BOOTSTRAP_PROMPT,
            )
        except Exception as e:
            # The user starts from the raw template instead
            logger.error("Profile auto-apply failed", template_id=self.template.id, error=str(e))
            return

        self.state.working_html = html
        self._has_rendered = True
        self.values.update({k: v for k, v in self.profile.values_by_key.items() if has_value(v)})
        self._record(PromptHistoryItem(text=BOOTSTRAP_PROMPT, role=HistoryRole.USER))
        self._record(PromptHistoryItem(text=SUCCESS_MESSAGE, role=HistoryRole.SYSTEM))
        self._log_change(BOOTSTRAP_CHANGE)

        try:
            await self._persist()
            self._autosave.cancel()
            self.auto_applied = True
        except Exception as e:
            logger.warning("Auto-save after profile apply failed", error=str(e))
            self.dirty = True

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def handle_turn(
        self,
        prompt_text: Optional[str] = None,
        image: Union[ImageRef, str, None] = None,
        field_values: Optional[Mapping[str, str]] = None,
    ) -> TurnResult:
        """
        Process one user turn.

        Args:
            prompt_text: Free-text instruction
            image: Attached image (remote URL or base64 data URL)
            field_values: Field values being applied this turn

        Returns:
            TurnResult. ``success`` is False when the engine failed; the
            working document is unchanged in that case.
        """
        if self.phase is not CustomizationPhase.INTERACTIVE:
            raise TurnRejectedError(f"Customization is not interactive (phase: {self.phase.value})")
        if self._turn_in_flight:
            raise TurnRejectedError("A turn is already in progress")

        prompt = (prompt_text or "").strip()
        if isinstance(image, str):
            image = ImageRef.parse(image) if image.strip() else None
        known_keys = {f.field_key for f in self.fields}
        delta = {
            k: v for k, v in (field_values or {}).items()
            if k in known_keys and has_value(v)
        }

        if not prompt and image is None and not delta:
            return TurnResult(success=True, html=self.working_html, message="Nothing to apply")

        route = choose_route(prompt, image, delta)
        self._record(PromptHistoryItem(
            text=prompt or (IMAGE_ONLY_PROMPT if image else FIELDS_ONLY_PROMPT),
            role=HistoryRole.USER,
            attached_image=image.source if image else None,
        ))

        self._turn_in_flight = True
        changes: List[Dict[str, Any]] = []
        no_changes = False
        try:
            if route is TurnRoute.TOOL_EDIT:
                result = await self.edit_engine.edit(self.working_html, prompt)
                new_html = result.html
                changes = result.changes()
                no_changes = result.no_changes
            else:
                new_html = await self.merge_engine.apply(
                    self.working_html,
                    self.fields,
                    delta,
                    prompt or None,
                    image,
                )
        except Exception as e:
            logger.error("Customization turn failed", route=route.value, error=str(e))
            self._record(PromptHistoryItem(text=FAILURE_MESSAGE, role=HistoryRole.SYSTEM))
            return TurnResult(success=False, html=self.working_html, route=route, message=FAILURE_MESSAGE)
        finally:
            self._turn_in_flight = False

        if no_changes:
            self._record(PromptHistoryItem(text=NO_CHANGES_MESSAGE, role=HistoryRole.SYSTEM))
            self._log_change(describe_change(prompt))
            return TurnResult(success=True, html=self.working_html, route=route, message=NO_CHANGES_MESSAGE)

        self.state.working_html = new_html
        self.values.update(delta)
        self._record(PromptHistoryItem(text=SUCCESS_MESSAGE, role=HistoryRole.SYSTEM))
        self._log_change(describe_change(prompt))

        logger.info("Customization turn applied", route=route.value, chars=len(new_html))
        return TurnResult(
            success=True,
            html=new_html,
            route=route,
            message=SUCCESS_MESSAGE,
            changes=changes,
        )

    def _record(self, item: PromptHistoryItem) -> None:
        self.state.prompt_history.append(item)
        self.mark_dirty()

    def _log_change(self, description: str) -> None:
        self.state.change_log.append(ChangeLogItem(description=description))
        self.mark_dirty()

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def mark_dirty(self) -> None:
        """Flag unsaved changes and (re)start the autosave timer."""
        self._revision += 1
        self.dirty = True
        self._autosave.trigger()

    def to_payload(self) -> Dict[str, Any]:
        """Save payload for the customizations API."""
        return {
            "template_id": self.template.id,
            "name": self.name,
            "values": dict(self.values),
            "rendered_html": self.working_html,
            "prompt_history": self.state.prompt_history.to_payload(),
            "change_log": self.state.change_log.to_payload(),
        }

    async def _persist(self) -> str:
        """Write the current state. Only one save runs at a time."""
        async with self._save_lock:
            revision = self._revision
            payload = self.to_payload()
            if self.customization_id is None:
                self.customization_id = await self.sink.create(payload)
            else:
                await self.sink.update(self.customization_id, payload)

            # Edits made while the sink was busy stay dirty for the next save
            if self._revision == revision:
                self.dirty = False
            return self.customization_id

    async def _autosave_now(self) -> None:
        if not self.dirty:
            return
        try:
            await self._persist()
            logger.info("Autosaved customization", customization_id=self.customization_id)
        except Exception as e:
            logger.warning("Autosave failed", customization_id=self.customization_id, error=str(e))

    async def save(self) -> str:
        """Save immediately. Errors surface to the caller as SaveError."""
        self._autosave.cancel()
        previous = self.phase
        self._transition(CustomizationPhase.SAVING)
        try:
            return await self._persist()
        except SaveError:
            raise
        except Exception as e:
            raise SaveError(str(e)) from e
        finally:
            self._transition(previous)

    async def close(self) -> None:
        """Teardown: flush any unsaved edit instead of dropping it."""
        if self._autosave.pending:
            await self._autosave.flush()
        elif self.dirty:
            await self._autosave_now()

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    async def export(self, exporter: RenderServiceExporter, export_format: ExportFormat) -> bytes:
        return await exporter.export(self.working_html, self.name, export_format)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customization_id": self.customization_id,
            "template_id": self.template.id,
            "name": self.name,
            "phase": self.phase.value,
            "html": self.working_html,
            "values": dict(self.values),
            "prompt_history": self.state.prompt_history.to_payload(),
            "change_log": self.state.change_log.to_payload(),
            "dirty": self.dirty,
            "auto_applied": self.auto_applied,
        }
