"""
Prompt Compiler - renders the copy-paste prompt for an external chat AI.

Pure and deterministic: the same inputs always produce byte-identical text.
No timestamps, no randomness, no network.
"""

from typing import Dict, List, Mapping, Optional, Sequence

from flyer_engine.models import ProfileField, Template, TemplateField, has_value


UNCATEGORIZED = "Other"
TEMPLATE_FIELDS_HEADING = "Template Details"

CLOSING_INSTRUCTIONS = """FINAL OUTPUT REQUIREMENTS:
- Return the COMPLETE HTML document, from <!DOCTYPE html> to </html>
- Keep every section, style and script of the template unless instructed otherwise above
- Use my information exactly as written; do not invent names, numbers, emails or URLs
- Do NOT include explanations, notes or commentary
- Do NOT wrap the output in markdown code fences"""


def _field_line(f: TemplateField, value: str) -> str:
    return f"- {f.label}: {value.strip()}"


def _group_profile_lines(
    profile_fields: Sequence[ProfileField],
    profile_values: Mapping[str, str],
    skip_keys: set,
) -> Dict[str, List[str]]:
    """Profile values grouped by category, in first-seen category order."""
    groups: Dict[str, List[str]] = {}
    ordered = sorted(profile_fields, key=lambda f: f.display_order)

    for f in ordered:
        if f.field_key in skip_keys:
            continue
        value = profile_values.get(f.field_key)
        if not has_value(value):
            continue
        category = (f.category or "").strip() or UNCATEGORIZED
        groups.setdefault(category, []).append(_field_line(f, value))

    return groups


def compile_prompt(
    template: Template,
    template_field_values: Mapping[str, str],
    profile_fields: Sequence[ProfileField],
    profile_values: Mapping[str, str],
    system_prompt: Optional[str] = None,
    template_prompt: Optional[str] = None,
) -> str:
    """
    Build the personalization prompt a user pastes into an external chat AI.

    Section order: page size, brand guidelines, my information (profile
    values by category, then template-local values), template-specific
    instructions, template HTML, closing requirements. Every section except
    the HTML and closing block is omitted when it has no content. Fields whose
    value is empty or whitespace never appear.

    Template-local values take precedence over profile values with the same
    field key, so each value is listed once.

    Args:
        template: Template whose HTML is echoed and whose fields define local values
        template_field_values: Values keyed by template field_key
        profile_fields: Profile catalog (with categories)
        profile_values: Profile values keyed by field_key
        system_prompt: Brand guidelines; defaults to the template's own
        template_prompt: Per-template instructions; defaults to the template's own

    Returns:
        The compiled prompt text
    """
    system_prompt = template.system_prompt if system_prompt is None else system_prompt
    template_prompt = template.template_prompt if template_prompt is None else template_prompt

    sections: List[str] = []

    sections.append(
        f'Personalize the "{template.name}" marketing template below using my information.\n\n'
        f"PAGE SIZE: The finished document must be laid out for {template.page_size}. "
        "Keep the page dimensions fixed; content must fit the page without overflowing."
    )

    if system_prompt and system_prompt.strip():
        sections.append(f"BRAND GUIDELINES:\n{system_prompt.strip()}")

    template_fields = sorted(template.fields, key=lambda f: f.display_order)
    template_lines = [
        _field_line(f, template_field_values[f.field_key])
        for f in template_fields
        if has_value(template_field_values.get(f.field_key))
    ]
    overridden = {
        f.field_key for f in template_fields
        if has_value(template_field_values.get(f.field_key))
    }

    profile_groups = _group_profile_lines(profile_fields, profile_values, overridden)

    info_blocks = [
        f"## {category}\n" + "\n".join(lines)
        for category, lines in profile_groups.items()
    ]
    if template_lines:
        info_blocks.append(f"## {TEMPLATE_FIELDS_HEADING}\n" + "\n".join(template_lines))

    if info_blocks:
        sections.append("MY INFORMATION:\n\n" + "\n\n".join(info_blocks))

    if template_prompt and template_prompt.strip():
        sections.append(f"TEMPLATE-SPECIFIC INSTRUCTIONS:\n{template_prompt.strip()}")

    sections.append(f"TEMPLATE HTML:\n{template.html_content}")
    sections.append(CLOSING_INSTRUCTIONS)

    return "\n\n".join(sections)
