"""
Tests for the copy-paste prompt compiler.
"""

from flyer_engine.models import ProfileField, Template
from flyer_engine.services.prompt_compiler import CLOSING_INSTRUCTIONS, compile_prompt
from tests.conftest import SAMPLE_PROFILE, SAMPLE_TEMPLATE


def _profile_fields():
    return [ProfileField.from_dict(f) for f in SAMPLE_PROFILE["fields"]]


def _compile(template_values=None, profile_values=None, **kwargs):
    return compile_prompt(
        Template.from_dict(SAMPLE_TEMPLATE),
        template_values or {},
        _profile_fields(),
        profile_values if profile_values is not None else SAMPLE_PROFILE["valuesByKey"],
        **kwargs,
    )


class TestCompilePrompt:
    def test_deterministic(self):
        assert _compile({"name": "Jane"}) == _compile({"name": "Jane"})

    def test_section_order(self):
        prompt = _compile({"name": "Jane"})
        markers = [
            "PAGE SIZE:",
            "BRAND GUIDELINES:",
            "MY INFORMATION:",
            "TEMPLATE-SPECIFIC INSTRUCTIONS:",
            "TEMPLATE HTML:",
            "FINAL OUTPUT REQUIREMENTS:",
        ]
        positions = [prompt.index(m) for m in markers]
        assert positions == sorted(positions)
        assert prompt.endswith(CLOSING_INSTRUCTIONS)

    def test_page_size_from_template(self):
        assert "8.5x11 inches" in _compile()

    def test_blank_values_omitted(self):
        prompt = _compile({"name": "   "})
        assert "Email:" not in prompt
        assert "Agent Name:" not in prompt

    def test_profile_grouped_by_category_in_first_seen_order(self):
        prompt = _compile()
        assert prompt.index("## Contact") < prompt.index("## Business")
        assert "- Phone: (555) 123-4567" in prompt
        assert "- Brokerage: Acme Realty" in prompt

    def test_template_value_listed_once_over_profile_value(self):
        template = Template.from_dict({
            **SAMPLE_TEMPLATE,
            "template_fields": [{"field_key": "first_name", "label": "First Name"}],
        })
        profile_fields = [ProfileField.from_dict(
            {"field_key": "first_name", "label": "First Name", "category": "Personal"}
        )]

        prompt = compile_prompt(template, {"first_name": "Jane"}, profile_fields, {"first_name": "Janet"})

        assert prompt.count("Jane") == 1
        assert "Janet" not in prompt
        assert "## Template Details\n- First Name: Jane" in prompt

    def test_uncategorized_profile_fields_go_to_other(self):
        fields = [ProfileField.from_dict({"field_key": "motto", "label": "Motto"})]
        prompt = compile_prompt(Template.from_dict(SAMPLE_TEMPLATE), {}, fields, {"motto": "Home first"})
        assert "## Other\n- Motto: Home first" in prompt

    def test_no_information_section_when_nothing_filled(self):
        prompt = _compile(profile_values={})
        assert "MY INFORMATION:" not in prompt

    def test_explicit_prompts_override_template(self):
        prompt = _compile(system_prompt="Be bold.", template_prompt="")
        assert "BRAND GUIDELINES:\nBe bold." in prompt
        assert "TEMPLATE-SPECIFIC INSTRUCTIONS:" not in prompt
