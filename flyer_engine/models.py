"""
Domain types shared by the customization engines.

Templates, profiles and their fields arrive from the external CRUD layer as
loose JSON; the ``from_dict`` constructors are the single place where that
shape is turned into typed values.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import re
import uuid

from flyer_engine.config import settings


class FieldType(Enum):
    """Closed set of field kinds a template or profile can declare"""
    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"
    IMAGE = "image"
    COLOR = "color"
    URL = "url"
    EMAIL = "email"
    PHONE = "phone"

    @classmethod
    def parse(cls, value: Any) -> "FieldType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            # Unknown kinds are treated as plain text rather than rejected
            return cls.TEXT


class HistoryRole(Enum):
    USER = "user"
    SYSTEM = "system"


def has_value(value: Optional[str]) -> bool:
    """True when a field value is non-empty after trimming whitespace."""
    return bool(value and str(value).strip())


@dataclass(frozen=True)
class TemplateField:
    """A typed slot declared by a template"""
    field_key: str
    field_type: FieldType
    label: str
    placeholder: Optional[str] = None
    default_value: Optional[str] = None
    is_required: bool = False
    display_order: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TemplateField":
        return cls(
            field_key=data["field_key"],
            field_type=FieldType.parse(data.get("field_type", "text")),
            label=data.get("label") or data["field_key"],
            placeholder=data.get("placeholder"),
            default_value=data.get("default_value"),
            is_required=bool(data.get("is_required", False)),
            display_order=int(data.get("display_order") or 0),
        )


@dataclass(frozen=True)
class ProfileField(TemplateField):
    """A field from the user-level profile catalog, grouped by category"""
    category: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileField":
        base = TemplateField.from_dict(data)
        return cls(
            field_key=base.field_key,
            field_type=base.field_type,
            label=base.label,
            placeholder=base.placeholder,
            default_value=base.default_value,
            is_required=base.is_required,
            display_order=base.display_order,
            category=data.get("category"),
        )


@dataclass(frozen=True)
class Template:
    """An admin-authored HTML document with its field schema"""
    id: str
    html_content: str
    fields: List[TemplateField] = field(default_factory=list)
    name: str = "Template"
    system_prompt: Optional[str] = None
    template_prompt: Optional[str] = None
    page_size: str = settings.DEFAULT_PAGE_SIZE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        raw_fields = data.get("template_fields") or data.get("fields") or []
        system_prompt = data.get("system_prompt")
        if isinstance(system_prompt, dict):
            system_prompt = system_prompt.get("prompt_content")
        return cls(
            id=str(data["id"]),
            html_content=data.get("html_content") or "",
            fields=[TemplateField.from_dict(f) for f in raw_fields],
            name=data.get("name") or "Template",
            system_prompt=system_prompt,
            template_prompt=data.get("template_prompt"),
            page_size=data.get("size") or data.get("page_size") or settings.DEFAULT_PAGE_SIZE,
        )

    def default_values(self) -> Dict[str, str]:
        return {f.field_key: f.default_value or "" for f in self.fields}


@dataclass(frozen=True)
class Profile:
    """User profile catalog plus values, as supplied by the profile source"""
    completed: bool
    fields: List[ProfileField] = field(default_factory=list)
    values_by_key: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Profile":
        profile = data.get("profile") or {}
        return cls(
            completed=bool(profile.get("profile_completed", data.get("completed", False))),
            fields=[ProfileField.from_dict(f) for f in data.get("fields") or []],
            values_by_key={
                k: str(v) for k, v in (data.get("valuesByKey") or data.get("values_by_key") or {}).items()
                if v is not None
            },
        )

    @property
    def has_values(self) -> bool:
        return any(has_value(v) for v in self.values_by_key.values())


_DATA_URL_PATTERN = re.compile(r"^data:(image/[A-Za-z0-9.+-]+)?[^,]*;base64,(.*)$", re.DOTALL)


@dataclass(frozen=True)
class ImageRef:
    """An attached image: either a remote URL or inline base64 bytes"""
    source: str
    media_type: str = "image/jpeg"
    data: Optional[str] = None  # base64 payload when inline

    @property
    def is_remote(self) -> bool:
        return self.data is None

    @classmethod
    def parse(cls, value: str) -> "ImageRef":
        """Detect a remote URL vs a ``data:image/...;base64,`` URL."""
        value = value.strip()
        if value.startswith(("http://", "https://")):
            return cls(source=value)

        match = _DATA_URL_PATTERN.match(value)
        if match:
            return cls(
                source=value,
                media_type=match.group(1) or "image/jpeg",
                data=match.group(2),
            )

        if value.startswith("data:") and "," in value:
            return cls(source=value, data=value.split(",", 1)[1])

        # Bare base64 without a data URL header
        return cls(source=f"data:image/jpeg;base64,{value}", data=value)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class PromptHistoryItem:
    """One chat entry in a customization session"""
    text: str
    role: HistoryRole
    attached_image: Optional[str] = None
    timestamp: datetime = field(default_factory=_now)
    id: str = field(default_factory=lambda: _new_id("prompt"))

    def to_dict(self) -> Dict[str, Any]:
        item = {
            "id": self.id,
            "prompt": self.text,
            "timestamp": self.timestamp.isoformat(),
            "type": self.role.value,
        }
        if self.attached_image:
            item["image"] = self.attached_image
        return item

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PromptHistoryItem":
        return cls(
            id=data.get("id") or _new_id("prompt"),
            text=data.get("prompt") or data.get("text") or "",
            role=HistoryRole(data.get("type") or data.get("role") or "user"),
            attached_image=data.get("image"),
            timestamp=_parse_timestamp(data.get("timestamp")),
        )


@dataclass(frozen=True)
class ChangeLogItem:
    """Human-readable record of one applied change"""
    description: str
    timestamp: datetime = field(default_factory=_now)
    id: str = field(default_factory=lambda: _new_id("change"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeLogItem":
        return cls(
            id=data.get("id") or _new_id("change"),
            description=data.get("description") or "",
            timestamp=_parse_timestamp(data.get("timestamp")),
        )


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            pass
    return _now()
