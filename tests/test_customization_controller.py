"""
Tests for the customization session controller.

Verifies:
- turn routing between the tool editor and the field-value merge
- history and change log growth per turn, including failures
- NeedsProfile gate and first-load profile bootstrap
- debounced autosave, flush on close, manual save errors
"""

import asyncio

import pytest
import pytest_asyncio

from flyer_engine.agents.customization_controller import (
    BOOTSTRAP_CHANGE,
    BOOTSTRAP_PROMPT,
    FAILURE_MESSAGE,
    NO_CHANGES_MESSAGE,
    SUCCESS_MESSAGE,
    CustomizationController,
    CustomizationPhase,
    TurnRejectedError,
    TurnRoute,
    choose_route,
    describe_change,
)
from flyer_engine.agents.editing_agent import EditingAgent
from flyer_engine.models import HistoryRole, Profile
from flyer_engine.services.field_merge import FieldValueMergeEngine
from flyer_engine.services.persistence import SaveError
from flyer_engine.services.provider_gateway import ToolInvocation
from tests.conftest import GENERATED_HTML, SAMPLE_HTML, SAMPLE_PROFILE, FakeSink


def _controller(gateway, template, sink, profile=None, **kwargs):
    kwargs.setdefault("autosave_delay", 60)
    return CustomizationController(
        template,
        FieldValueMergeEngine(gateway),
        EditingAgent(gateway),
        sink,
        profile=profile,
        **kwargs,
    )


@pytest_asyncio.fixture()
async def controller(gateway, template, sink):
    ctrl = _controller(gateway, template, sink)
    await ctrl.load()
    yield ctrl
    ctrl._autosave.cancel()


# ── Routing ─────────────────────────────────────────────


class TestChooseRoute:
    def test_plain_text_goes_to_tools(self):
        assert choose_route("Change the title", None, {}) is TurnRoute.TOOL_EDIT

    def test_image_goes_to_merge(self):
        assert choose_route("Use this photo", "https://x.com/a.jpg", {}) is TurnRoute.FIELD_MERGE

    def test_field_values_go_to_merge(self):
        assert choose_route("", None, {"name": "Jane"}) is TurnRoute.FIELD_MERGE

    def test_blank_field_values_do_not_count(self):
        assert choose_route("Bigger title", None, {"name": "  "}) is TurnRoute.TOOL_EDIT


class TestDescribeChange:
    def test_long_prompt_truncated(self):
        prompt = "x" * 80
        assert describe_change(prompt, limit=50) == f'Applied: "{"x" * 50}..."'

    def test_without_prompt(self):
        assert describe_change("") == "Regenerated with field values"


# ── Loading ─────────────────────────────────────────────


class TestLoad:
    async def test_no_profile_goes_interactive(self, controller, sink):
        assert controller.phase is CustomizationPhase.INTERACTIVE
        assert controller.working_html == SAMPLE_HTML
        assert sink.created == []

    async def test_incomplete_profile_needs_profile(self, gateway, template, sink):
        profile = Profile.from_dict({**SAMPLE_PROFILE, "profile": {"profile_completed": False}})
        ctrl = _controller(gateway, template, sink, profile=profile)

        assert await ctrl.load() is CustomizationPhase.NEEDS_PROFILE
        with pytest.raises(TurnRejectedError):
            await ctrl.handle_turn("Change the title")

    async def test_profile_bootstrap_applies_and_saves(self, gateway, fake_provider, template, sink, profile):
        ctrl = _controller(gateway, template, sink, profile=profile)

        await ctrl.load()

        assert ctrl.phase is CustomizationPhase.INTERACTIVE
        assert ctrl.working_html == GENERATED_HTML
        assert ctrl.auto_applied
        assert ctrl.customization_id == "cust-1"
        assert not ctrl.dirty
        assert [p.text for p in ctrl.state.prompt_history] == [BOOTSTRAP_PROMPT, SUCCESS_MESSAGE]
        assert [c.description for c in ctrl.state.change_log] == [BOOTSTRAP_CHANGE]
        assert "Acme Realty" in fake_provider.complete_calls[0]["prompt"]
        assert sink.created[0]["rendered_html"] == GENERATED_HTML

    async def test_existing_render_skips_bootstrap(self, gateway, fake_provider, template, sink, profile):
        ctrl = _controller(gateway, template, sink, profile=profile, rendered_html="<p>saved</p>")

        await ctrl.load()

        assert ctrl.working_html == "<p>saved</p>"
        assert fake_provider.complete_calls == []
        assert sink.created == []

    async def test_bootstrap_failure_keeps_template(self, gateway, fake_provider, template, sink, profile):
        fake_provider.error = RuntimeError("overloaded")
        ctrl = _controller(gateway, template, sink, profile=profile)

        await ctrl.load()

        assert ctrl.phase is CustomizationPhase.INTERACTIVE
        assert ctrl.working_html == SAMPLE_HTML
        assert len(ctrl.state.prompt_history) == 0

    async def test_fields_merge_template_and_profile(self, gateway, template, sink, profile):
        ctrl = _controller(gateway, template, sink, profile=profile)
        assert [f.field_key for f in ctrl.fields] == ["name", "headshot", "phone", "email", "brokerage"]


# ── Turns ───────────────────────────────────────────────


class TestHandleTurn:
    async def test_successful_merge_turn(self, controller, fake_provider):
        result = await controller.handle_turn("Put my name in", field_values={"name": "Jane Doe"})

        assert result.success
        assert result.route is TurnRoute.FIELD_MERGE
        assert controller.working_html == GENERATED_HTML
        assert controller.values["name"] == "Jane Doe"
        assert [p.role for p in controller.state.prompt_history] == [HistoryRole.USER, HistoryRole.SYSTEM]
        assert len(controller.state.change_log) == 1
        assert controller.state.change_log[0].description == 'Applied: "Put my name in"'
        assert controller.dirty

    async def test_tool_turn_reports_changes(self, controller, fake_provider):
        fake_provider.tool_calls = [
            ToolInvocation("replace_text", {"find": "(555) 000-0000", "replace": "(555) 222-3333"})
        ]

        result = await controller.handle_turn("Change phone to (555) 222-3333")

        assert result.route is TurnRoute.TOOL_EDIT
        assert "(555) 222-3333" in controller.working_html
        assert result.changes == [{
            "tool": "replace_text",
            "params": {"find": "(555) 000-0000", "replace": "(555) 222-3333", "all": True},
        }]

    async def test_no_tool_calls_still_logs_the_turn(self, controller):
        result = await controller.handle_turn("Make it nicer")

        assert result.success
        assert result.message == NO_CHANGES_MESSAGE
        assert controller.working_html == SAMPLE_HTML
        assert controller.state.prompt_history[-1].text == NO_CHANGES_MESSAGE
        assert [c.description for c in controller.state.change_log] == ['Applied: "Make it nicer"']

    async def test_failure_keeps_last_good_html(self, controller, fake_provider):
        fake_provider.error = RuntimeError("500 from provider")

        result = await controller.handle_turn("Use this photo", image="https://x.com/me.jpg")

        assert not result.success
        assert result.html == SAMPLE_HTML
        assert controller.working_html == SAMPLE_HTML
        assert controller.state.prompt_history[-1].text == FAILURE_MESSAGE
        assert controller.state.prompt_history[0].attached_image == "https://x.com/me.jpg"
        assert len(controller.state.change_log) == 0

    async def test_empty_turn_is_noop(self, controller, fake_provider):
        result = await controller.handle_turn("   ", field_values={"unknown_key": "x", "name": ""})

        assert result.success
        assert len(controller.state.prompt_history) == 0
        assert fake_provider.complete_calls == []

    async def test_concurrent_turn_rejected(self, gateway, fake_provider, controller):
        gate = asyncio.Event()
        original = fake_provider.complete

        async def slow_complete(prompt, image=None):
            await gate.wait()
            return await original(prompt, image)

        fake_provider.complete = slow_complete

        first = asyncio.create_task(controller.handle_turn(field_values={"name": "Jane"}))
        await asyncio.sleep(0)

        with pytest.raises(TurnRejectedError):
            await controller.handle_turn("Change the title")

        gate.set()
        result = await first
        assert result.success


# ── Saving ──────────────────────────────────────────────


class TestSaving:
    async def test_autosave_debounced(self, gateway, template, sink):
        ctrl = _controller(gateway, template, sink, autosave_delay=0.05)
        await ctrl.load()

        await ctrl.handle_turn(field_values={"name": "Jane"})
        await ctrl.handle_turn(field_values={"name": "Janet"})
        assert sink.created == []

        await asyncio.sleep(0.2)

        assert len(sink.created) == 1
        assert sink.created[0]["values"]["name"] == "Janet"
        assert not ctrl.dirty

    async def test_second_autosave_updates(self, gateway, template, sink):
        ctrl = _controller(gateway, template, sink, autosave_delay=0.05)
        await ctrl.load()

        await ctrl.handle_turn(field_values={"name": "Jane"})
        await asyncio.sleep(0.2)
        await ctrl.handle_turn(field_values={"name": "Janet"})
        await asyncio.sleep(0.2)

        assert len(sink.created) == 1
        assert sink.updated[0][0] == "cust-1"

    async def test_close_flushes_pending_save(self, controller, sink):
        await controller.handle_turn(field_values={"name": "Jane"})

        await controller.close()

        assert len(sink.created) == 1
        assert not controller.dirty

    async def test_payload_shape(self, controller):
        await controller.handle_turn(field_values={"name": "Jane"})

        payload = controller.to_payload()

        assert payload["template_id"] == "tpl-1"
        assert payload["name"] == "My Open House Flyer"
        assert payload["prompt_history"][0]["type"] == "user"
        assert payload["prompt_history"][0]["prompt"] == "(Field values updated)"
        assert "timestamp" in payload["change_log"][0]

    async def test_manual_save_error_surfaces(self, gateway, template):
        ctrl = _controller(gateway, template, FakeSink(fail=True))
        await ctrl.load()

        with pytest.raises(SaveError):
            await ctrl.save()
        assert ctrl.phase is CustomizationPhase.INTERACTIVE

    async def test_autosave_failure_is_silent(self, gateway, template):
        ctrl = _controller(gateway, template, FakeSink(fail=True), autosave_delay=0.01)
        await ctrl.load()

        await ctrl.handle_turn(field_values={"name": "Jane"})
        await asyncio.sleep(0.1)

        assert ctrl.dirty

    async def test_edit_during_in_flight_save_is_saved_next(self, gateway, template):
        sink = GatedSink()
        ctrl = _controller(gateway, template, sink, autosave_delay=0.05)
        await ctrl.load()

        await ctrl.handle_turn(field_values={"name": "Jane"})
        await asyncio.wait_for(sink.started.wait(), timeout=1)

        await ctrl.handle_turn(field_values={"name": "Janet"})
        sink.gate.set()
        await asyncio.sleep(0.3)

        assert [p["values"]["name"] for p in sink.created] == ["Jane"]
        assert sink.updated[-1][1]["values"]["name"] == "Janet"
        assert not ctrl.dirty

    async def test_manual_save_waits_for_in_flight_create(self, gateway, template):
        sink = GatedSink()
        ctrl = _controller(gateway, template, sink, autosave_delay=0.01)
        await ctrl.load()

        await ctrl.handle_turn(field_values={"name": "Jane"})
        await asyncio.wait_for(sink.started.wait(), timeout=1)

        manual = asyncio.create_task(ctrl.save())
        await asyncio.sleep(0)
        sink.gate.set()

        assert await manual == "cust-1"
        assert len(sink.created) == 1
        assert sink.updated[0][0] == "cust-1"

    async def test_image_only_turn_logged_without_prompt(self, controller):
        await controller.handle_turn(image="https://x.com/me.jpg")

        assert controller.state.prompt_history[0].text == "(Image attached)"
        assert controller.state.change_log[0].description == "Regenerated with field values"


class GatedSink(FakeSink):
    """Sink whose create() blocks until the test opens the gate."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()
        self.gate = asyncio.Event()

    async def create(self, payload):
        self.started.set()
        await self.gate.wait()
        return await super().create(payload)
