"""Terminal error taxonomy for streaming decode sessions.

Only these errors ever reach the caller, and only as the single terminal
outcome of a session. Parse failures inside the extraction cascade are
recovered locally and never raised. Each error carries a stable `error_code`
for analytics tagging and a `remediation` line telling the user what to try.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True, eq=False)
class StreamDecodeError(Exception):
    """Base class for decoder terminal errors."""

    message: str
    error_code: str
    remediation: str = ""

    def __str__(self) -> str:  # pragma: no cover - trivial
        return f"{self.error_code}: {self.message}"


class TransportError(StreamDecodeError):
    """Network-level failure: refused connection, DNS, transport timeout."""

    def __init__(self, message: str = "Could not reach the model server") -> None:
        super().__init__(
            message=message,
            error_code="transport_error",
            remediation="Check that the model server is running and reachable.",
        )


class ServerError(StreamDecodeError):
    """Non-2xx response, or an error object in place of generated output."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(
            message=message,
            error_code="server_error",
            remediation="Check the server logs and that the model is available.",
        )
        self.status_code = status_code

    @classmethod
    def from_status(cls, status_code: int, server_message: str | None) -> ServerError:
        if server_message:
            return cls(server_message, status_code=status_code)
        return cls(f"HTTP error {status_code}", status_code=status_code)


class StallTimeout(StreamDecodeError):
    """The stream stopped delivering data and nothing could be salvaged."""

    def __init__(self, elapsed_seconds: float) -> None:
        super().__init__(
            message=(
                f"No data received for {int(elapsed_seconds)} seconds and no "
                "content could be recovered"
            ),
            error_code="stall_timeout",
            remediation=(
                "Try simplifying the prompt, retrying the request, or checking "
                "the model server's health."
            ),
        )
        self.elapsed_seconds = elapsed_seconds


class UnparsableResponse(StreamDecodeError):
    """Every extraction strategy failed on the full response body."""

    def __init__(
        self,
        message: str = "The model sent a response in an unexpected format",
    ) -> None:
        super().__init__(
            message=message,
            error_code="unparsable_response",
            remediation="Please try again, possibly with a simpler prompt.",
        )
