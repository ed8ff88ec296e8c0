"""Per-request orchestrator: bytes in, ordered fragments and one outcome out.

`StreamDecoder` owns a single `DecodeSession`. Delivery (`feed`), completion
signals and liveness ticks all run under one re-entrant lock, and every event
reaches the sink while that lock is held, so the order the caller observes is
the order transitions happened in.
"""

from __future__ import annotations

import codecs
import threading
import time
import uuid
from collections.abc import Callable

from apscheduler.schedulers.base import BaseScheduler  # type: ignore[import-untyped]
from pydantic import ValidationError

from core.config import DecoderConfig
from core.error_handler import StructuredLogger, describe_failure
from core.exceptions import (
    ServerError,
    StallTimeout,
    StreamDecodeError,
    TransportError,
    UnparsableResponse,
)
from schemas.ollama import ServerErrorBody
from schemas.stream import DecoderEvent
from services.stream_decoder.extractor import ContentExtractor
from services.stream_decoder.liveness import LivenessMonitor, next_stage
from services.stream_decoder.recovery import recover
from services.stream_decoder.splitter import split
from services.stream_decoder.types import (
    Cancelled,
    ChunkKind,
    DecodeSession,
    ExtractionResult,
    Failed,
    Finished,
    Fragment,
    Malformed,
    NoContent,
    Outcome,
    SessionState,
    StallStage,
)


logger = StructuredLogger(__name__)

EventSink = Callable[[DecoderEvent], None]

STALL_RECOVERY_NOTE = (
    "\n\n[Response was automatically completed because processing stalled. "
    "The model may be experiencing issues with this particular prompt.]"
)


def forced_stop_note(elapsed_seconds: float) -> str:
    return (
        f"\n\n[Response was stopped after {int(elapsed_seconds)} seconds of "
        "inactivity. This might happen when:\n"
        "- The model reaches a complex reasoning point\n"
        "- The prompt contains conflicting instructions\n"
        "- The system resources are limited\n\n"
        "You can try simplifying your prompt or trying again.]"
    )


def _ignore(_event: DecoderEvent) -> None:
    return None


class StreamDecoder:
    """Decode one streaming response.

    Usage:
        decoder = StreamDecoder(sink=events.append, model="llama3")
        decoder.start()
        for data in body_parts:
            decoder.feed(data)
        decoder.complete()
        decoder.outcome  # Finished(...), Failed(...) or Cancelled()

    Terminal signals on a session that already ended are ignored, so callers
    can signal completion from several places without coordinating.
    """

    def __init__(
        self,
        sink: EventSink | None = None,
        *,
        model: str | None = None,
        config: DecoderConfig | None = None,
        scheduler: BaseScheduler | None = None,
        clock: Callable[[], float] = time.monotonic,
        session_id: str | None = None,
    ):
        self.config = config or DecoderConfig()
        self.model = model
        self.session_id = session_id or str(uuid.uuid4())
        self._sink = sink or _ignore
        self._clock = clock
        self._lock = threading.RLock()
        self._extractor = ContentExtractor(self.config, model=model)
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._monitor = LivenessMonitor(
            self.session_id,
            on_tick=self._on_tick,
            clock=clock,
            interval=self.config.heartbeat_interval,
            scheduler=scheduler,
        )
        self._session: DecodeSession | None = None
        # Plain-text lines keep their line breaks; JSON lines never carry them
        self._last_line_plain = False
        # Unreadable lines in an all-prose body are prose too
        self._seen_plain = False
        self._seen_structured = False

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self._session is None:
            return SessionState.IDLE
        return self._session.state

    @property
    def session(self) -> DecodeSession | None:
        return self._session

    @property
    def outcome(self) -> Outcome | None:
        return None if self._session is None else self._session.outcome

    @property
    def monitor(self) -> LivenessMonitor:
        return self._monitor

    # -------------------------------------------------------------------------
    # Signals
    # -------------------------------------------------------------------------

    def start(self) -> DecodeSession:
        with self._lock:
            if self._session is not None:
                raise RuntimeError("StreamDecoder handles a single request")
            self._session = DecodeSession(
                session_id=self.session_id,
                model=self.model,
                last_activity=self._clock(),
            )
            self._monitor.arm()
            logger.debug(
                "Decode session started",
                correlation_id=self.session_id,
                model=self.model,
            )
            return self._session

    def feed(self, data: bytes | str) -> None:
        """Deliver the next piece of the body; any split point is allowed."""
        with self._lock:
            session = self._require_session()
            if session.state.is_terminal:
                return

            if isinstance(data, bytes):
                session.bytes_received += len(data)
                text = self._utf8.decode(data)
            else:
                session.bytes_received += len(data.encode("utf-8"))
                text = data

            session.last_activity = self._clock()
            if session.stall_stage is not StallStage.HEALTHY:
                logger.info(
                    "Stream resumed",
                    correlation_id=self.session_id,
                    stage=session.stall_stage.name,
                )
                session.stall_stage = StallStage.HEALTHY

            session.raw_body += text
            session.pending += text
            while "\n" in session.pending and not session.state.is_terminal:
                line, session.pending = session.pending.split("\n", 1)
                self._process_line(line.rstrip("\r"), terminated=True)

    def complete(self) -> None:
        """The transport reached the end of the body."""
        with self._lock:
            session = self._require_session()
            if session.state.is_terminal:
                return

            tail = self._utf8.decode(b"", final=True)
            session.raw_body += tail
            pending, session.pending = session.pending + tail, ""
            if pending:
                self._process_line(pending, terminated=False)
            if session.state.is_terminal:
                return

            self._finish_on_completion(session)

    def fail_transport(self, exc: BaseException | None = None) -> None:
        """The connection failed before or during the body."""
        error = TransportError()
        if exc is not None:
            error = TransportError(f"Could not reach the model server ({type(exc).__name__})")
        with self._lock:
            session = self._require_session()
            if session.state.is_terminal:
                return
            self._fail(error)

    def fail_http(self, status_code: int, body: bytes | str | None = None) -> None:
        """The server answered with a non-2xx status."""
        server_message: str | None = None
        if body:
            try:
                server_message = ServerErrorBody.model_validate_json(body).error
            except ValidationError:
                server_message = None
        with self._lock:
            session = self._require_session()
            if session.state.is_terminal:
                return
            self._fail(ServerError.from_status(status_code, server_message))

    def cancel(self) -> bool:
        """Stop the session. Returns False if it had already ended."""
        with self._lock:
            session = self._session
            if session is None or session.state.is_terminal:
                return False
            self._monitor.disarm()
            self._terminate(Cancelled())
        # Token callbacks abort the transport; they may block briefly, so they
        # run after the session is already terminal and the lock is released.
        session.cancel_token.cancel()
        return True

    def tick(self, now: float | None = None) -> None:
        """Run one liveness check immediately (the scheduler does this too)."""
        self._on_tick(self._clock() if now is None else now)

    # -------------------------------------------------------------------------
    # Pipeline
    # -------------------------------------------------------------------------

    def _require_session(self) -> DecodeSession:
        if self._session is None:
            raise RuntimeError("start() must be called before signalling the decoder")
        return self._session

    def _process_line(self, line: str, *, terminated: bool) -> None:
        if not line.strip():
            if terminated and self._last_line_plain:
                self._emit_fragment("\n")
            return

        chunks = split(line)
        plain = len(chunks) == 1 and chunks[0].kind is ChunkKind.PLAIN_TEXT
        for chunk in chunks:
            result = self._extractor.extract(chunk)
            if (
                isinstance(result, Malformed)
                and len(chunks) == 1
                and self._seen_plain
                and not self._seen_structured
            ):
                result = Fragment(line, strategy="plain")
                plain = True
            elif not plain and not isinstance(result, Malformed):
                self._seen_structured = True
            if plain and terminated and isinstance(result, Fragment):
                result = Fragment(result.text + "\n", result.done, result.strategy)
            self._last_line_plain = plain
            self._seen_plain = self._seen_plain or plain
            self._apply(result)
            if self._session is not None and self._session.state.is_terminal:
                return

    def _apply(self, result: ExtractionResult) -> None:
        session = self._require_session()
        if isinstance(result, Fragment):
            if result.done:
                session.saw_done = True
            self._emit_fragment(result.text)
        elif isinstance(result, NoContent):
            if result.done:
                session.saw_done = True
            if result.error:
                session.server_error = result.error
        elif isinstance(result, Malformed):
            logger.debug(
                "Skipping unreadable chunk",
                correlation_id=self.session_id,
                reason=result.reason,
            )

    def _emit_fragment(self, text: str) -> None:
        session = self._require_session()
        session.buffer += text
        session.fragments_emitted += 1
        self._sink(
            DecoderEvent(event="fragment", session_id=self.session_id, data={"text": text})
        )

    def _finish_on_completion(self, session: DecodeSession) -> None:
        if session.fragments_emitted:
            self._finish("normal", session.buffer)
            return
        if session.saw_done:
            self._finish("done-marker", "")
            return
        if session.server_error:
            self._fail(ServerError(session.server_error))
            return

        recovered = recover(session.raw_body, self.config, self.model)
        if recovered:
            logger.info(
                "Recovered content from unparsed response",
                correlation_id=self.session_id,
                chars=len(recovered),
                received_bytes=session.bytes_received,
            )
            self._emit_fragment(recovered)
            self._finish("recovered", recovered)
            return

        if not session.raw_body.strip():
            self._fail(UnparsableResponse("The model server returned an empty response"))
        else:
            self._fail(UnparsableResponse())

    # -------------------------------------------------------------------------
    # Liveness
    # -------------------------------------------------------------------------

    def _on_tick(self, now: float) -> None:
        with self._lock:
            session = self._session
            if session is None or session.state is not SessionState.STREAMING:
                return

            elapsed = now - session.last_activity
            target = next_stage(session.stall_stage, elapsed, self.config.stall_warn_after)
            if not session.advance_stage(target):
                return

            if target is StallStage.WARNED:
                logger.warning(
                    "No data received from model server",
                    correlation_id=self.session_id,
                    elapsed_seconds=round(elapsed, 1),
                    chars=len(session.buffer),
                )
            elif target is StallStage.FIRST_RECOVERY_ATTEMPTED:
                self._flush_pending(session)
                if session.state.is_terminal:
                    return
                if len(session.buffer) >= self.config.stall_recovery_min_chars:
                    logger.warning(
                        "Completing stalled response with partial output",
                        correlation_id=self.session_id,
                        chars=len(session.buffer),
                    )
                    self._emit_fragment(STALL_RECOVERY_NOTE)
                    self._finish("stall-recovered", session.buffer)
                else:
                    logger.warning(
                        "Stream still stalled, too little output to complete",
                        correlation_id=self.session_id,
                        chars=len(session.buffer),
                    )
            elif target is StallStage.FORCED_RECOVERY:
                self._flush_pending(session)
                if session.state.is_terminal:
                    return
                if session.buffer:
                    self._emit_fragment(forced_stop_note(elapsed))
                    self._finish("stall-forced", session.buffer)
                else:
                    self._fail(StallTimeout(elapsed))

    def _flush_pending(self, session: DecodeSession) -> None:
        """Process the unterminated tail so a stalled line still counts."""
        pending, session.pending = session.pending, ""
        if pending:
            self._process_line(pending, terminated=False)

    # -------------------------------------------------------------------------
    # Terminal transitions
    # -------------------------------------------------------------------------

    def _finish(self, reason: str, text: str) -> None:
        self._terminate(Finished(reason, text))

    def _fail(self, error: StreamDecodeError) -> None:
        self._terminate(Failed(error))

    def _terminate(self, outcome: Outcome) -> None:
        session = self._require_session()
        self._monitor.disarm()
        session.outcome = outcome

        if isinstance(outcome, Finished):
            session.state = SessionState.FINISHED
            event = DecoderEvent(
                event="finished",
                session_id=self.session_id,
                data={"reason": outcome.reason, "chars": len(outcome.text)},
            )
            logger.info(
                "Decode session finished",
                correlation_id=self.session_id,
                reason=outcome.reason,
                emitted=session.fragments_emitted,
                received_bytes=session.bytes_received,
            )
        elif isinstance(outcome, Failed):
            session.state = SessionState.FAILED
            event = DecoderEvent(
                event="failed",
                session_id=self.session_id,
                data={
                    "error_code": outcome.error.error_code,
                    "message": describe_failure(outcome.error),
                },
            )
            logger.error(
                "Decode session failed",
                correlation_id=self.session_id,
                error_code=outcome.error.error_code,
                received_bytes=session.bytes_received,
            )
        else:
            session.state = SessionState.CANCELLED
            event = DecoderEvent(event="cancelled", session_id=self.session_id)
            logger.info("Decode session cancelled", correlation_id=self.session_id)

        self._sink(event)


def decode_body(
    body: bytes | str,
    *,
    model: str | None = None,
    config: DecoderConfig | None = None,
) -> tuple[list[str], Outcome | None]:
    """Decode a complete body in one shot; returns (fragments, outcome)."""
    fragments: list[str] = []

    def sink(event: DecoderEvent) -> None:
        if event.text is not None:
            fragments.append(event.text)

    decoder = StreamDecoder(sink, model=model, config=config)
    decoder.start()
    decoder.feed(body)
    decoder.complete()
    return fragments, decoder.outcome
