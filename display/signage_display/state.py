"""What a display currently shows, derived from the settings snapshot.

:meth:`DisplayState.apply_settings` recomputes everything from the full
snapshot, so applying the same snapshot twice, or applying ``initial`` and
then an identical ``settings_update``, leaves the state unchanged.
"""

from __future__ import annotations

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from signage.targeting import filter_slides, normalize_tags

logger = logging.getLogger(__name__)

DEFAULT_LIVESTREAM_CHECK_MS = 60000

_HEX_RE = re.compile(r"^#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})$", re.IGNORECASE)

# (colour key, opacity key) → CSS variable
_PANEL_VARS = {
    ("mainContentBg", "mainContentOpacity"): "--color-panel-bg",
    ("weatherPanelBg", "weatherPanelOpacity"): "--color-panel-dark",
    ("bottomPanelBg", "bottomPanelOpacity"): "--color-panel-darker",
}


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    """``#1e3c72`` → ``(30, 60, 114)``; anything unparsable is black."""
    match = _HEX_RE.match(value or "")
    if not match:
        return (0, 0, 0)
    return tuple(int(part, 16) for part in match.groups())  # type: ignore[return-value]


def theme_variables(theme: Any) -> dict[str, str]:
    """CSS custom properties for a ``customTheme`` section."""
    if not isinstance(theme, dict):
        return {}
    css: dict[str, str] = {}
    if theme.get("bgGradientStart") and theme.get("bgGradientEnd"):
        css["--color-bg-gradient-start"] = theme["bgGradientStart"]
        css["--color-bg-gradient-end"] = theme["bgGradientEnd"]
    for (colour_key, opacity_key), var in _PANEL_VARS.items():
        if colour_key in theme and opacity_key in theme:
            r, g, b = hex_to_rgb(theme[colour_key])
            try:
                opacity = float(theme[opacity_key]) / 100
            except (TypeError, ValueError):
                continue
            css[var] = f"rgba({r}, {g}, {b}, {opacity:g})"
    if theme.get("accentColor"):
        css["--color-accent-gold"] = theme["accentColor"]
    return css


def _check_interval_ms(value: Any) -> int | float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return DEFAULT_LIVESTREAM_CHECK_MS
    return value


def livestream_config(config: Any) -> dict[str, Any]:
    """Normalised ``livestreamConfig``; only a real ``true`` enables anything."""
    if not isinstance(config, dict) or config.get("enabled") is not True:
        return {"enabled": False, "url": None, "autoDetect": False,
                "checkInterval": DEFAULT_LIVESTREAM_CHECK_MS}
    return {
        "enabled": True,
        "url": config.get("url") if isinstance(config.get("url"), str) and config["url"] else None,
        "autoDetect": config.get("autoDetect") is True,
        "checkInterval": _check_interval_ms(config.get("checkInterval")),
    }


def use_image_slides(value: Any) -> bool | None:
    if value is None:
        return None
    return value is True or value == "true"


@dataclass
class DisplayState:
    """Settings-derived view state plus the side-channel overlays."""

    display_id: str = ""
    tags: list[str] = field(default_factory=list)
    settings: dict[str, Any] = field(default_factory=dict)
    source: str | None = None  # stream | fetch | cache

    # Derived from settings
    theme: dict[str, str] = field(default_factory=dict)
    slides: list[dict[str, Any]] = field(default_factory=list)
    general: dict[str, Any] = field(default_factory=dict)
    livestream: dict[str, Any] = field(default_factory=lambda: livestream_config(None))
    image_slides: bool | None = None
    bell_schedule: dict[str, Any] | None = None

    # Overlays driven by side-channel messages
    emergency_alert: dict[str, Any] | None = None
    dismissal_active: bool = False
    dismissal_students: list[Any] = field(default_factory=list)

    def apply_settings(self, settings: dict[str, Any], source: str = "stream") -> bool:
        """Replace the snapshot and re-derive the view; True if anything changed.

        A snapshot that cannot be derived raises and leaves the state as it was.
        """
        if settings is None:
            settings = {}
        if not isinstance(settings, dict):
            raise TypeError(f"settings snapshot must be an object, got {type(settings).__name__}")
        before = self._derived()
        previous = (self.settings, self.source)
        self.settings = copy.deepcopy(settings)
        self.source = source
        try:
            self._derive()
        except Exception:
            self.settings, self.source = previous
            self._derive()
            raise
        changed = self._derived() != before
        logger.debug(
            "Applied %d settings keys from %s (%s)",
            len(self.settings), source, "changed" if changed else "unchanged",
        )
        return changed

    def set_tags(self, tags: Any) -> bool:
        """Replace the display's tags and re-filter slides; True if they changed."""
        normalized = normalize_tags(tags)
        if normalized == self.tags:
            return False
        self.tags = normalized
        self._derive()
        return True

    def _derive(self) -> None:
        s = self.settings
        self.theme = theme_variables(s.get("customTheme"))
        slides = s.get("customSlides")
        if isinstance(slides, list):
            self.slides = filter_slides([sl for sl in slides if isinstance(sl, dict)], self.tags)
        else:
            self.slides = []
        general = s.get("generalConfig")
        self.general = dict(general) if isinstance(general, dict) else {}
        self.livestream = livestream_config(s.get("livestreamConfig"))
        self.image_slides = use_image_slides(s.get("USE_IMAGE_SLIDES"))

        bell = s.get("bellSchedule")
        features = s.get("enabledFeatures")
        if isinstance(bell, dict) and isinstance(features, dict) and features.get("bellSchedule") is False:
            bell = {**bell, "enabled": False}
        self.bell_schedule = bell if isinstance(bell, dict) else None

    def _derived(self) -> tuple:
        return (
            self.tags, self.theme, self.slides, self.general,
            self.livestream, self.image_slides, self.bell_schedule,
        )
