"""
Edit tools offered to the model for deterministic HTML edits.

Each tool is a literal find/replace operation on the HTML string. There is no
DOM or CSS parsing: the model must quote exact substrings from the document.
"""
from dataclasses import MISSING, asdict, dataclass, fields
import re
from typing import Any, Dict, List, Optional, Type, Union

from flyer_engine.logging_config import logger


@dataclass(frozen=True)
class ReplaceText:
    find: str
    replace: str
    all: bool = True

    def apply(self, html: str) -> str:
        if not self.find:
            return html
        if self.all:
            return html.replace(self.find, self.replace)
        return html.replace(self.find, self.replace, 1)


@dataclass(frozen=True)
class ChangeColor:
    new_color: str
    target: str = ""
    old_color: Optional[str] = None

    def apply(self, html: str) -> str:
        if not self.old_color or not self.new_color:
            return html
        return html.replace(self.old_color, self.new_color)


@dataclass(frozen=True)
class ChangeStyle:
    property: str
    new_value: str
    old_value: Optional[str] = None
    selector_hint: Optional[str] = None

    def apply(self, html: str) -> str:
        if not self.property or not self.old_value or not self.new_value:
            return html
        # Not anchored at a word boundary: "top" also matches inside "margin-top"
        pattern = re.compile(
            rf"({re.escape(self.property)}\s*:\s*){re.escape(self.old_value)}",
            re.IGNORECASE,
        )
        return pattern.sub(lambda m: m.group(1) + self.new_value, html)


@dataclass(frozen=True)
class ChangeImage:
    old_src: str
    new_src: str

    def apply(self, html: str) -> str:
        if not self.old_src or not self.new_src:
            return html
        return html.replace(self.old_src, self.new_src)


@dataclass(frozen=True)
class ChangeLink:
    old_href: str
    new_href: str

    def apply(self, html: str) -> str:
        if not self.old_href or not self.new_href:
            return html
        return html.replace(self.old_href, self.new_href)


EditOperation = Union[ReplaceText, ChangeColor, ChangeStyle, ChangeImage, ChangeLink]


# Tool definitions (Anthropic format; converted for OpenAI by the provider)
EDIT_TOOLS: Dict[str, Dict[str, Any]] = {
    "replace_text": {
        "name": "replace_text",
        "description": "Replace text content in the HTML. Use this to change names, phone numbers, emails, addresses, headings, paragraphs, or any visible text.",
        "input_schema": {
            "type": "object",
            "properties": {
                "find": {"type": "string", "description": "The exact text to find (case-sensitive)"},
                "replace": {"type": "string", "description": "The text to replace it with"},
                "all": {"type": "boolean", "description": "Replace all occurrences (default: true)"}
            },
            "required": ["find", "replace"]
        },
        "operation": ReplaceText
    },
    "change_color": {
        "name": "change_color",
        "description": "Change a color in the CSS styles. Use this to modify background colors, text colors, border colors, etc.",
        "input_schema": {
            "type": "object",
            "properties": {
                "target": {"type": "string", "description": "Description of what color to change (e.g., \"background\", \"header background\", \"button color\")"},
                "old_color": {"type": "string", "description": "The current color value (hex, rgb, or color name) exactly as it appears in the HTML/CSS"},
                "new_color": {"type": "string", "description": "The new color value (hex format preferred, e.g., #ff5500)"}
            },
            "required": ["target", "new_color"]
        },
        "operation": ChangeColor
    },
    "change_style": {
        "name": "change_style",
        "description": "Change a CSS style property value. Use for font sizes, margins, padding, widths, etc.",
        "input_schema": {
            "type": "object",
            "properties": {
                "selector_hint": {"type": "string", "description": "Description of the element (e.g., \"main heading\", \"body text\")"},
                "property": {"type": "string", "description": "CSS property name (e.g., font-size, margin, padding, width)"},
                "old_value": {"type": "string", "description": "Current value to find"},
                "new_value": {"type": "string", "description": "New value to set"}
            },
            "required": ["property", "new_value"]
        },
        "operation": ChangeStyle
    },
    "change_image": {
        "name": "change_image",
        "description": "Change an image URL/source in the HTML.",
        "input_schema": {
            "type": "object",
            "properties": {
                "old_src": {"type": "string", "description": "Current image URL or filename to find"},
                "new_src": {"type": "string", "description": "New image URL"}
            },
            "required": ["old_src", "new_src"]
        },
        "operation": ChangeImage
    },
    "change_link": {
        "name": "change_link",
        "description": "Change a link URL (href) in the HTML.",
        "input_schema": {
            "type": "object",
            "properties": {
                "old_href": {"type": "string", "description": "Current link URL to find"},
                "new_href": {"type": "string", "description": "New link URL"}
            },
            "required": ["old_href", "new_href"]
        },
        "operation": ChangeLink
    },
}


def tool_definitions() -> List[Dict[str, Any]]:
    """Tool catalog as sent to the provider."""
    return [
        {key: value for key, value in tool.items() if key != "operation"}
        for tool in EDIT_TOOLS.values()
    ]


def parse_operation(name: str, tool_input: Dict[str, Any]) -> Optional[EditOperation]:
    """
    Turn a raw tool call into a typed operation.

    Unknown tool names, non-object inputs and inputs missing required keys
    are dropped (None).
    """
    tool = EDIT_TOOLS.get(name)
    if tool is None:
        logger.warning("Ignoring unknown edit tool", tool=name)
        return None

    if not isinstance(tool_input, dict):
        logger.warning("Ignoring edit tool call with non-object input", tool=name)
        return None

    operation_cls: Type = tool["operation"]
    required = [f.name for f in fields(operation_cls) if f.default is MISSING]
    allowed = tool["input_schema"]["properties"].keys()

    if any(tool_input.get(key) is None for key in required):
        logger.warning("Ignoring edit tool call with missing inputs", tool=name, input=tool_input)
        return None

    kwargs = {}
    for key in allowed:
        if key not in tool_input or tool_input[key] is None:
            continue
        value = tool_input[key]
        if key == "all":
            kwargs[key] = value if isinstance(value, bool) else str(value).lower() != "false"
        else:
            kwargs[key] = str(value)

    return operation_cls(**kwargs)


def operation_name(operation: EditOperation) -> str:
    for name, tool in EDIT_TOOLS.items():
        if isinstance(operation, tool["operation"]):
            return name
    raise TypeError(f"Unknown edit operation: {operation!r}")


def describe_operation(operation: EditOperation) -> Dict[str, Any]:
    """Serializable ``{tool, params}`` record of an operation."""
    params = {key: value for key, value in asdict(operation).items() if value is not None}
    return {"tool": operation_name(operation), "params": params}


def execute_operations(html: str, operations: List[EditOperation]) -> str:
    """Apply operations sequentially, each against the previous result."""
    result = html
    for operation in operations:
        result = operation.apply(result)
    return result
