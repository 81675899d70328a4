# ABOUTME: Exception types shared by the synthesis, composition, storage and export flows
# ABOUTME: Route handlers map these onto HTTP status codes
from __future__ import annotations


class LingodinoError(Exception):
    """Base class for service errors."""


class PreconditionError(LingodinoError):
    """Request cannot proceed; raised before any external call."""


class NotFoundError(LingodinoError):
    pass


class ConflictError(LingodinoError):
    """Another job already owns the conversation."""


class SynthesisError(LingodinoError):
    """Speech backend failed or returned an unusable payload."""


class StorageError(LingodinoError):
    pass


class StageError(LingodinoError):
    """A media render stage failed."""

    def __init__(self, stage: str, command: list[str], returncode: int | None, stderr: str = ""):
        self.stage = stage
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        tail = stderr.strip()[-500:]
        super().__init__(
            f"[{stage}] failed (exit {returncode}): {tail}. CMD: {' '.join(command)}"
        )
