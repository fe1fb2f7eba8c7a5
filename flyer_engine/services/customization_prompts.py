"""
Customization Prompt Builder

Builds the instructions sent to the provider when a template is
personalized: the rule-laden field-value prompt, the lean free-text prompt,
the streaming prompt, and the system prompt for tool-based edits.
"""

from typing import Iterable, List, Mapping, Optional

from flyer_engine.models import ImageRef, TemplateField, has_value


FIELD_VALUES_INTRO = """You are an HTML template customization expert. Modify this real-estate marketing template with the provided field values."""


# Semantic routing table: binds each kind of field to where it belongs in the markup.
FIELD_ROUTING_RULES = """Rules:
1. Replace the matching placeholder or sample content with each field value. Never leave sample names, numbers or addresses where a value was provided.
2. First name / last name / full name: use in the agent name and contact sections (headings, signature, "contact me" blocks).
3. Phone: replace phone numbers and phone placeholders. Email: replace email addresses and mailto: links. URL / website: replace website text and link hrefs.
4. Accent or brand COLOR: apply to CSS accents - borders, button backgrounds, links, highlights, dividers and decorative elements. Do NOT recolor black, white or gray elements, body text or page backgrounds.
5. Brokerage / company: use in the brokerage or company name area, including logo alt text and footer.
6. Title / designation: use in the agent title line beneath the name.
7. Address / office address: use in the address or office location section.
8. Social links (Instagram, Facebook, LinkedIn, etc.): set the href of the matching social icon or link.
9. Bio / about: use in the about or bio section, replacing sample paragraph text.
10. Headshot / photo / logo IMAGE fields: set the src of the matching <img> (agent photo, headshot or logo) to the exact URL given.
11. Keep the existing HTML structure, layout, fonts and page size. Do not add or remove sections."""


OUTPUT_RULES = """Return ONLY the complete modified HTML document. No explanations, no markdown."""


PROMPT_ONLY_TEMPLATE = """You are an HTML editor. Your ONLY job is to output modified HTML code.

TASK: {task}
{image_directive}
INPUT HTML:
{html}

OUTPUT RULES:
- Output the COMPLETE modified HTML document
- Start with <!DOCTYPE html> or <html> or the first HTML tag
- Do NOT explain what you changed
- Do NOT ask questions
- Do NOT use markdown code blocks
- ONLY output raw HTML code

OUTPUT:"""


DEFAULT_IMAGE_TASK = "Use the attached image in this template where it fits best."


TOOL_EDITOR_SYSTEM_PROMPT = """You are an HTML editor assistant. Analyze the user's request and use the provided tools to make changes to the HTML.

IMPORTANT RULES:
1. Look at the HTML to find the EXACT text/values to replace
2. For replace_text, use the EXACT text from the HTML (case-sensitive)
3. You can call multiple tools if needed
4. Only make the changes the user requested

HTML to edit:
{html}"""


def describe_field_values(
    fields: Iterable[TemplateField],
    values: Mapping[str, str],
) -> List[str]:
    """One line per field that has a non-blank value, in schema order."""
    lines = []
    for f in fields:
        value = values.get(f.field_key)
        if not has_value(value):
            continue
        lines.append(f'- {f.label} ({f.field_key}, type: {f.field_type.value}): "{value.strip()}"')
    return lines


def build_image_directive(image: Optional[ImageRef]) -> str:
    if image is None:
        return ""

    if image.is_remote:
        return (
            "\nAn image is attached. Wherever the image belongs, use this EXACT URL "
            f"in the src (or href) attribute, character for character: {image.source}\n"
            "Do not invent a different URL and do not embed the image as base64.\n"
        )

    return (
        "\nAn image is attached to this message. Use it as the visual reference "
        "for the requested change. Do not embed it as base64 data.\n"
    )


def build_field_values_prompt(
    html: str,
    field_lines: List[str],
    user_prompt: Optional[str] = None,
    image: Optional[ImageRef] = None,
) -> str:
    """Instruction for merging field values into the template."""
    parts = [
        FIELD_VALUES_INTRO,
        f"HTML:\n{html}",
        "Field values:\n" + "\n".join(field_lines),
    ]

    if user_prompt and user_prompt.strip():
        parts.append(f'Additional instruction: "{user_prompt.strip()}"')

    image_directive = build_image_directive(image).strip()
    if image_directive:
        parts.append(image_directive)

    parts.append(FIELD_ROUTING_RULES)
    parts.append(OUTPUT_RULES)

    return "\n\n".join(parts)


def build_prompt_only(
    html: str,
    user_prompt: Optional[str] = None,
    image: Optional[ImageRef] = None,
) -> str:
    """Lean instruction for free-text (and image-only) requests."""
    task = user_prompt.strip() if user_prompt and user_prompt.strip() else DEFAULT_IMAGE_TASK
    return PROMPT_ONLY_TEMPLATE.format(
        task=task,
        image_directive=build_image_directive(image),
        html=html,
    )


def build_tool_editor_system_prompt(html: str) -> str:
    return TOOL_EDITOR_SYSTEM_PROMPT.format(html=html)
