"""Push-channel message types.

Every frame sent to a display is one variant of :data:`BroadcastMessage`,
discriminated by its ``type`` field.  Each variant is self-contained: a
display can apply any message without having seen earlier ones.

Frames travel as Server-Sent Events::

    data: {"type": "settings_update", "settings": {...}, ...}\\n\\n
"""

from __future__ import annotations

import json
import time
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def now_ms() -> int:
    return int(time.time() * 1000)


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timestamp: int = Field(default_factory=now_ms)


class InitialMessage(Message):
    """Baseline state sent as the first frame of every channel."""

    type: Literal["initial"] = "initial"
    displayId: str
    displayTags: list[str] = Field(default_factory=list)
    settings: dict[str, Any] = Field(default_factory=dict)


class SettingsUpdateMessage(Message):
    """Full snapshot after a committed write.  ``key`` is a UI hint only."""

    type: Literal["settings_update"] = "settings_update"
    settings: dict[str, Any] = Field(default_factory=dict)
    key: str | None = None


class EmergencyAlertMessage(Message):
    type: Literal["emergency_alert"] = "emergency_alert"
    alert: dict[str, Any] = Field(default_factory=dict)


class EmergencyCancelMessage(Message):
    type: Literal["emergency_cancel"] = "emergency_cancel"


class DismissalStartMessage(Message):
    type: Literal["dismissal_start"] = "dismissal_start"


class DismissalEndMessage(Message):
    type: Literal["dismissal_end"] = "dismissal_end"


class DismissalUpdateMessage(Message):
    type: Literal["dismissal_update"] = "dismissal_update"
    students: list[Any] = Field(default_factory=list)


class ServerShutdownMessage(Message):
    type: Literal["server_shutdown"] = "server_shutdown"


class CommandMessage(Message):
    """Operator command (``reload``, ``refresh_settings``...) for one or all displays."""

    type: Literal["command"] = "command"
    command: str
    params: dict[str, Any] = Field(default_factory=dict)
    targetDisplay: str = "*"


BroadcastMessage = Annotated[
    Union[
        InitialMessage,
        SettingsUpdateMessage,
        EmergencyAlertMessage,
        EmergencyCancelMessage,
        DismissalStartMessage,
        DismissalEndMessage,
        DismissalUpdateMessage,
        ServerShutdownMessage,
        CommandMessage,
    ],
    Field(discriminator="type"),
]

_adapter: TypeAdapter[BroadcastMessage] = TypeAdapter(BroadcastMessage)

KEEPALIVE_FRAME = ": keepalive\n\n"


def parse_message(data: str | bytes | dict) -> BroadcastMessage:
    """Decode one message; raises ``pydantic.ValidationError`` on unknown shapes."""
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    return _adapter.validate_python(data)


def encode_sse(message: Message) -> str:
    """Serialize *message* as a single SSE ``data:`` frame."""
    return f"data: {message.model_dump_json()}\n\n"
