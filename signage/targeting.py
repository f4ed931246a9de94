"""Content targeting — choose which slides a display shows from its tags.

Pure functions with no I/O; shared by the server (tag normalisation on
connect) and the display agent (slide filtering on every snapshot).
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

ALL_TAG = "all"


def normalize_tags(tags: Iterable[Any] | str | None) -> list[str]:
    """Lower-case, strip, de-duplicate; keeps first-seen order.

    Accepts a list or a comma-separated string (``"gym, sports"``).
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = tags.split(",")
    seen: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            continue
        t = tag.strip().lower()
        if t and t not in seen:
            seen.append(t)
    return seen


def _target_tags(slide: Any) -> list[str]:
    if isinstance(slide, Mapping):
        raw = slide.get("targetTags")
    else:
        raw = getattr(slide, "targetTags", None)
    if not raw:
        return []
    return [t for t in raw if isinstance(t, str)]


def slide_matches(slide: Any, display_tags: Sequence[str]) -> bool:
    """True if *slide* should be shown on a display tagged *display_tags*."""
    if not display_tags:
        return True
    targets = [t.lower() for t in _target_tags(slide)]
    if not targets or ALL_TAG in targets:
        return True
    wanted = {t.lower() for t in display_tags}
    return any(t in wanted for t in targets)


def filter_slides(slides: Sequence[Any] | None, display_tags: Sequence[str] | None) -> list[Any]:
    """Return the subset of *slides* for a display, preserving order.

    - No display tags: every slide.
    - Otherwise a slide passes if it has no target tags, targets ``"all"``,
      or shares at least one tag with the display (case-insensitive).
    """
    if not slides:
        return []
    tags = list(display_tags or [])
    if not tags:
        return list(slides)
    return [s for s in slides if slide_matches(s, tags)]
