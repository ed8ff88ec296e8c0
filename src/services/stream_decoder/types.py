"""Value types shared by the stream decoder stages.

These are plain frozen dataclasses and enums: the stages are pure functions
over them, and only `DecodeSession` (owned by the decoder) is mutable.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from core.exceptions import StreamDecodeError
from services.stream_decoder.cancellation import CancellationToken


class ChunkKind(enum.Enum):
    PLAIN_TEXT = "plain_text"
    SINGLE_OBJECT = "single_object"
    NDJSON = "ndjson"
    CONCATENATED_OBJECTS = "concatenated_objects"
    TRUNCATED = "truncated"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ResponseChunk:
    """A classified slice of the raw response body."""

    text: str
    kind: ChunkKind


# -----------------------------------------------------------------------------
# Extraction results
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Fragment:
    """Usable generated text. `done` mirrors the server's completion flag."""

    text: str
    done: bool = False
    strategy: str = "plain"


@dataclass(frozen=True, slots=True)
class NoContent:
    """The chunk carried no payload (metadata, keep-alive, final `done` line)."""

    done: bool = False
    error: str | None = None


@dataclass(frozen=True, slots=True)
class Malformed:
    """Nothing in the chunk could be classified or parsed."""

    reason: str


ExtractionResult = Fragment | NoContent | Malformed


# -----------------------------------------------------------------------------
# Session state
# -----------------------------------------------------------------------------


class StallStage(enum.IntEnum):
    HEALTHY = 0
    WARNED = 1
    FIRST_RECOVERY_ATTEMPTED = 2
    FORCED_RECOVERY = 3


class SessionState(enum.Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    FINISHED = "finished"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionState.FINISHED,
            SessionState.FAILED,
            SessionState.CANCELLED,
        )


FinishReason = str  # normal | done-marker | recovered | stall-recovered | stall-forced


@dataclass(frozen=True, slots=True)
class Finished:
    reason: FinishReason
    text: str = ""


@dataclass(frozen=True, slots=True)
class Failed:
    error: StreamDecodeError


@dataclass(frozen=True, slots=True)
class Cancelled:
    pass


Outcome = Finished | Failed | Cancelled


@dataclass(slots=True)
class DecodeSession:
    """Per-request mutable state. Only the owning StreamDecoder touches it."""

    session_id: str
    model: str | None
    last_activity: float
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    state: SessionState = SessionState.STREAMING
    stall_stage: StallStage = StallStage.HEALTHY
    bytes_received: int = 0
    raw_body: str = ""
    pending: str = ""
    buffer: str = ""
    fragments_emitted: int = 0
    saw_done: bool = False
    server_error: str | None = None
    outcome: Outcome | None = None

    def advance_stage(self, target: StallStage) -> bool:
        """Move the stall stage forward; returns False if it would regress."""
        if target <= self.stall_stage:
            return False
        self.stall_stage = target
        return True
