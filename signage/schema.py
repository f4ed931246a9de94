"""Explicit schemas for the well-known settings sections.

Each section the displays understand gets a pydantic model with named
optional fields and documented defaults.  Writes are checked against these
models before they reach the store; the submitted JSON is stored as-is so a
read returns exactly what was written.  Validation is strict (no "5000" for
an integer, no "false" for a boolean) because the stored JSON is what the
displays consume.  Keys without a schema accept any
JSON value.
"""

from __future__ import annotations

import re
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

KEY_RE = re.compile(r"^[A-Za-z0-9_-]{1,100}$")
_HEX_COLOR_RE = re.compile(r"^#?[0-9a-fA-F]{6}$")
_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


class SettingsValidationError(ValueError):
    """Raised when a write payload does not match its section schema."""


class _Section(BaseModel):
    # Unknown fields are kept so newer admin panels can add options.
    model_config = ConfigDict(extra="allow", strict=True)


# ── Sections ──────────────────────────────────────────────────────

class ThemeSettings(_Section):
    bgGradientStart: str | None = None
    bgGradientEnd: str | None = None
    mainContentBg: str | None = None
    mainContentOpacity: float | None = Field(default=None, ge=0, le=100)
    weatherPanelBg: str | None = None
    weatherPanelOpacity: float | None = Field(default=None, ge=0, le=100)
    bottomPanelBg: str | None = None
    bottomPanelOpacity: float | None = Field(default=None, ge=0, le=100)
    accentColor: str | None = None

    @field_validator(
        "mainContentBg", "weatherPanelBg", "bottomPanelBg", "accentColor",
        "bgGradientStart", "bgGradientEnd",
    )
    @classmethod
    def _hex_color(cls, v: str | None) -> str | None:
        if v is not None and not _HEX_COLOR_RE.match(v):
            raise ValueError(f"expected #rrggbb colour, got {v!r}")
        return v


class Slide(_Section):
    content: str = ""
    targetTags: list[str] = Field(default_factory=list)


class LivestreamSettings(_Section):
    enabled: bool = False
    url: str | None = None
    autoDetect: bool = False
    checkInterval: int = Field(default=60000, ge=1000)  # ms


class GeneralSettings(_Section):
    schoolName: str | None = None
    slideshowInterval: int | None = Field(default=None, ge=1000)  # ms


class Period(_Section):
    name: str
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _hhmm(cls, v: str) -> str:
        if not _HHMM_RE.match(v):
            raise ValueError(f"expected HH:MM, got {v!r}")
        return v


class BellScheduleSettings(_Section):
    enabled: bool = False
    currentSchedule: str = "regular"
    schedules: dict[str, list[Period]] = Field(default_factory=dict)


class DisplayScheduleSettings(_Section):
    enabled: bool = False
    daysOfWeek: list[int] = Field(default_factory=lambda: [1, 2, 3, 4, 5])
    startTime: str = "07:00"
    endTime: str = "17:00"
    offMessage: str = "Display is currently off"


SECTION_SCHEMAS: dict[str, TypeAdapter] = {
    "customTheme": TypeAdapter(ThemeSettings),
    "customSlides": TypeAdapter(list[Slide]),
    "livestreamConfig": TypeAdapter(LivestreamSettings),
    "generalConfig": TypeAdapter(GeneralSettings),
    "bellSchedule": TypeAdapter(BellScheduleSettings),
    "displaySchedule": TypeAdapter(DisplayScheduleSettings),
    "USE_IMAGE_SLIDES": TypeAdapter(Union[bool, str]),
}


# ── Validation entry points ───────────────────────────────────────

def validate_setting(key: str, value: Any) -> None:
    """Check one key/value pair; raise :class:`SettingsValidationError` if bad."""
    if not isinstance(key, str) or not KEY_RE.match(key):
        raise SettingsValidationError(f"Invalid setting key: {key!r}")
    adapter = SECTION_SCHEMAS.get(key)
    if adapter is None or value is None:
        return
    try:
        adapter.validate_python(value, strict=True)
    except ValidationError as exc:
        raise SettingsValidationError(_summarize(key, exc)) from exc
    if key == "USE_IMAGE_SLIDES" and isinstance(value, str) and value not in ("true", "false"):
        raise SettingsValidationError("USE_IMAGE_SLIDES must be a boolean")


def validate_snapshot(snapshot: Any) -> None:
    """Check a whole settings object."""
    if not isinstance(snapshot, dict):
        raise SettingsValidationError("Settings must be a JSON object")
    for key, value in snapshot.items():
        validate_setting(key, value)


def _summarize(key: str, exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc or key}: {err.get('msg')}")
    return f"Invalid value for '{key}': " + "; ".join(parts)
