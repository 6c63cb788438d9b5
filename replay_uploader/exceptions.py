"""Exception hierarchy for the recording uploader."""

from __future__ import annotations

from typing import Any

from replay_uploader.const import AUTHENTICATION_REQUIRED_ERROR_CODE


class ReplayUploaderError(Exception):
    """Base class for all errors raised by this package."""


class RecordingLogError(ReplayUploaderError):
    """The recording log violates an invariant the fold relies on."""


class UnknownRecordingError(RecordingLogError):
    """A log entry references a recording that was never created."""

    def __init__(self, recording_id: str, kind: str) -> None:
        """Initialise the error.

        Args:
            recording_id: The id the entry referenced.
            kind: The kind of the offending entry.
        """
        super().__init__(f'Recording with ID "{recording_id}" not found ({kind})')
        self.recording_id = recording_id
        self.kind = kind


class InvalidLogEntryError(RecordingLogError):
    """A log entry is missing a field its kind requires."""


class ProtocolError(ReplayUploaderError):
    """Structured error returned by the protocol server."""

    def __init__(
        self, code: int, message: str, data: dict[str, Any] | None = None
    ) -> None:
        """Initialise the error.

        Args:
            code: Numeric protocol error code.
            message: Human readable message from the server.
            data: Additional error data.
        """
        super().__init__(f"protocol error {code}: {message}")
        self.protocol_code = code
        self.protocol_message = message
        self.protocol_data = data or {}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ProtocolError:
        """Build a ProtocolError from the wire ``error`` object."""
        return cls(
            code=int(payload.get("code", 0)),
            message=str(payload.get("message", "")),
            data=payload.get("data") or {},
        )

    @property
    def is_authentication_required(self) -> bool:
        """Whether the server rejected the access token."""
        return self.protocol_code == AUTHENTICATION_REQUIRED_ERROR_CODE

    def __str__(self) -> str:
        return f"Protocol error {self.protocol_code}: {self.protocol_message}"


class UnknownCommandError(ReplayUploaderError):
    """The server answered a correlation id that is not pending."""


class ConnectionClosedError(ReplayUploaderError):
    """The protocol connection closed while a command was pending."""


class AuthenticationError(ReplayUploaderError):
    """The protocol client could not authenticate."""


class AuthenticationRequiredError(AuthenticationError):
    """The access token was rejected; the whole batch is aborted."""


class TransferError(ReplayUploaderError):
    """A PUT to a pre-signed upload link returned a non-2xx status."""

    def __init__(self, status: int, reason: str | None = None) -> None:
        """Initialise the error.

        Args:
            status: HTTP status code.
            reason: HTTP reason phrase.
        """
        super().__init__(
            f"Failed to upload recording. Response was {status} {reason or ''}".strip()
        )
        self.status = status
        self.reason = reason


class MissingETagError(TransferError):
    """A multipart part response did not include an ETag header."""

    def __init__(self, status: int) -> None:
        """Initialise the error."""
        super().__init__(status, "ETag has to be returned in the response headers")


class UploadAbortedError(ReplayUploaderError):
    """A transfer was cancelled because a sibling part failed."""
