"""Typed models for the gateway dashboard API and push feed.

The models are plain frozen dataclasses validated through pydantic
``TypeAdapter``s. Wire payloads come from a best-effort status service, so a
field that is missing or fails validation is replaced by its documented
default instead of failing the whole payload. The only hard requirement is an
identity key (``sessionKey`` for live records, ``sessionId`` for history and
archive entries, ``name`` for tool calls, ``role`` for transcript messages);
list entries without one are dropped.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, TypeVar

from pydantic import (
    AfterValidator,
    BeforeValidator,
    Field,
    FiniteFloat,
    PlainValidator,
    TypeAdapter,
    ValidationError,
    ValidatorFunctionWrapHandler,
    WrapValidator,
)

from clawboard.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


# --- Lenient field types ---


def _or_default(default: object) -> WrapValidator:
    """Validate normally, but fall back to ``default`` instead of raising."""

    def validate(value: object, handler: ValidatorFunctionWrapHandler) -> object:
        try:
            return handler(value)
        except ValidationError:
            return default

    return WrapValidator(validate)


_DATETIME = TypeAdapter(datetime)


def _epoch_ms(value: object, handler: ValidatorFunctionWrapHandler) -> int:
    # Integral numbers and numeric strings first, then finite floats, then ISO 8601.
    try:
        return handler(value)
    except ValidationError:
        pass
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    if isinstance(value, str):
        try:
            return int(_DATETIME.validate_python(value).timestamp() * 1000)
        except ValidationError:
            pass
    return 0


Text = Annotated[str, _or_default("")]
OptText = Annotated[str | None, _or_default(None), AfterValidator(lambda value: value or None)]
Count = Annotated[int, _or_default(0)]
OptCount = Annotated[int | None, _or_default(None)]
Ratio = Annotated[FiniteFloat, _or_default(0.0)]
Flag = Annotated[bool, _or_default(False)]
Channel = Annotated[str, _or_default("unknown")]
EpochMs = Annotated[int, WrapValidator(_epoch_ms)]
"""Epoch milliseconds, also accepting ISO 8601 strings. Unparseable or non-finite values read as 0."""

Key = Annotated[str, Field(min_length=1)]


def _valid_items(
    item_type: type[T],
    *,
    collect: Callable[[list[T]], object] = tuple,
    none_if_missing: bool = False,
) -> PlainValidator:
    """Validate each list entry on its own and drop the ones that fail.

    A value that is not a list at all reads as an empty list, or as None
    with ``none_if_missing``.
    """
    adapter = TypeAdapter(item_type)

    def validate(value: object) -> object:
        if not isinstance(value, list):
            return None if none_if_missing else collect([])
        items: list[T] = []
        for raw in value:
            try:
                items.append(adapter.validate_python(raw))
            except ValidationError:
                continue
        dropped = len(value) - len(items)
        if dropped:
            logger.debug("Dropped %d invalid %s entries", dropped, item_type.__name__)
        return collect(items)

    return PlainValidator(validate)


# --- Session model ---


class ActivityState(str, Enum):
    """Live activity of a gateway session. Only IDLE is non-active."""

    IDLE = "idle"
    BUSY = "busy"
    THINKING = "thinking"
    TOOL_USE = "tool-use"
    TYPING = "typing"

    @property
    def is_active(self) -> bool:
        return self is not ActivityState.IDLE

    @classmethod
    def parse(cls, value: object) -> ActivityState:
        """Missing state reads as idle; unknown non-empty states collapse to busy."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str) or not value:
            return cls.IDLE
        try:
            return cls(value)
        except ValueError:
            return cls.BUSY


State = Annotated[ActivityState, BeforeValidator(ActivityState.parse)]


@dataclass(frozen=True)
class TokenUsage:
    total: Count = 0
    context: Count = 0
    percent_used: Annotated[Ratio, Field(validation_alias="percentUsed")] = 0.0


Usage = Annotated[TokenUsage, _or_default(TokenUsage())]


@dataclass(frozen=True)
class LastMessage:
    role: Annotated[str, _or_default("assistant")] = "assistant"
    preview: Text = ""
    timestamp: EpochMs = 0


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation, from a record's ``recentTools`` or the transcript tools endpoint."""

    name: Key
    status: Annotated[str, _or_default("done")] = "done"  # "running" | "done" | "error"
    timestamp: EpochMs = 0
    input: OptText = None
    output: OptText = None
    id: OptText = None
    duration_ms: Annotated[OptCount, Field(validation_alias="durationMs")] = None


ToolList = Annotated[tuple[ToolCall, ...], _valid_items(ToolCall)]


@dataclass(frozen=True)
class SessionRecord:
    """Live state of one gateway session, keyed by its immutable ``key``."""

    key: Annotated[Key, Field(validation_alias="sessionKey")]
    activity_state: Annotated[State, Field(validation_alias="state")] = ActivityState.IDLE
    last_activity: Annotated[EpochMs, Field(validation_alias="lastActivity")] = 0
    token_usage: Annotated[Usage, Field(validation_alias="tokenUsage")] = field(default_factory=TokenUsage)
    last_message: Annotated[LastMessage | None, _or_default(None), Field(validation_alias="lastMessage")] = None
    run_id: Annotated[OptText, Field(validation_alias="runId")] = None
    session_id: Annotated[Text, Field(validation_alias="sessionId")] = ""
    display_name: Annotated[Text, Field(validation_alias="displayName")] = ""
    label: Text = ""
    channel: Channel = "unknown"
    model: Text = ""
    kind: Text = ""
    recent_tools: Annotated[ToolList, Field(validation_alias="recentTools")] = ()

    @property
    def is_active(self) -> bool:
        return self.activity_state.is_active

    @property
    def title(self) -> str:
        return self.display_name or self.label or self.key


@dataclass(frozen=True)
class HistoricalSessionInfo:
    """Summary of a recently terminated session."""

    session_id: Annotated[Key, Field(validation_alias="sessionId")]
    label: Text = ""
    channel: Channel = "unknown"
    completed_at: Annotated[EpochMs, Field(validation_alias="completedAt")] = 0
    started_at: Annotated[EpochMs, Field(validation_alias="startedAt")] = 0
    duration_ms: Annotated[Count, Field(validation_alias="durationMs")] = 0
    model: Text = ""
    token_usage: Annotated[Usage, Field(validation_alias="tokenUsage")] = field(default_factory=TokenUsage)
    kind: Text = ""

    @property
    def title(self) -> str:
        return self.label or self.session_id


HistoryList = Annotated[tuple[HistoricalSessionInfo, ...], _valid_items(HistoricalSessionInfo)]


def _keyed(records: list[SessionRecord]) -> dict[str, SessionRecord]:
    return {record.key: record for record in records}


@dataclass(frozen=True)
class QueueSnapshot:
    """Point-in-time view of all sessions plus aggregates.

    Counts the source leaves out are derived from ``sessions``.
    ``historical_sessions`` is None when the source did not supply a list;
    push updates routinely omit it.
    """

    sessions: Annotated[Mapping[str, SessionRecord], _valid_items(SessionRecord, collect=_keyed)] = field(
        default_factory=dict
    )
    active_sessions: Annotated[OptCount, Field(validation_alias="activeSessions")] = None
    total_sessions: Annotated[OptCount, Field(validation_alias="totalSessions")] = None
    timestamp: EpochMs = 0
    connected: Flag = False
    historical_sessions: Annotated[
        tuple[HistoricalSessionInfo, ...] | None,
        _valid_items(HistoricalSessionInfo, none_if_missing=True),
        Field(validation_alias="historicalSessions"),
    ] = None

    def __post_init__(self) -> None:
        if self.active_sessions is None:
            active = sum(1 for record in self.sessions.values() if record.is_active)
            object.__setattr__(self, "active_sessions", active)
        if self.total_sessions is None:
            object.__setattr__(self, "total_sessions", len(self.sessions))


# --- Supplementary endpoints ---


@dataclass(frozen=True)
class ArchivedSession:
    session_id: Annotated[Key, Field(validation_alias="sessionId")]
    file_name: Annotated[Text, Field(validation_alias="fileName")] = ""
    last_modified: Annotated[Text, Field(validation_alias="lastModified")] = ""
    file_size: Annotated[Count, Field(validation_alias="fileSize")] = 0
    first_activity: Annotated[OptText, Field(validation_alias="firstActivity")] = None
    last_activity: Annotated[OptText, Field(validation_alias="lastActivity")] = None
    label: OptText = None


@dataclass(frozen=True)
class ArchivePage:
    sessions: Annotated[tuple[ArchivedSession, ...], _valid_items(ArchivedSession)] = ()
    total: OptCount = None

    def __post_init__(self) -> None:
        if self.total is None:
            object.__setattr__(self, "total", len(self.sessions))


@dataclass(frozen=True)
class TranscriptMessage:
    role: Key
    text: Text = ""
    timestamp: Text = ""
    truncated: Flag = False


TranscriptList = Annotated[tuple[TranscriptMessage, ...], _valid_items(TranscriptMessage)]


@dataclass(frozen=True)
class ToolPage:
    """Tool calls read from a session transcript, newest last."""

    tools: ToolList = ()
    total: OptCount = None

    def __post_init__(self) -> None:
        if self.total is None:
            object.__setattr__(self, "total", len(self.tools))


# --- Push envelope ---


@dataclass(frozen=True)
class WsMessage:
    """Envelope of every dashboard push message: ``{type, data, timestamp}``."""

    type: str
    data: Any = None
    timestamp: float | None = None
