"""Exception types shared by the runtime components."""

from __future__ import annotations


class ChorusError(RuntimeError):
    """Base class for runtime failures."""


class BackendError(ChorusError):
    """The inference engine was unreachable or returned a malformed response."""


class EmptyCompletionError(BackendError):
    """The engine answered but the response carried zero choices."""


class StreamCanceledError(ChorusError):
    """A streaming completion was stopped through stop_stream()."""

    def __init__(self, message: str = "stream canceled by user") -> None:
        super().__init__(message)


class PersonaError(ChorusError):
    """Invalid use of the persona registry (unknown id, duplicate, active removal)."""


class ToolLoopAborted(Exception):
    """Raised by a tool invoker to end the current orchestration early.

    This is the only tool-side exception that stops a loop or batch. Every
    other exception is an ordinary tool failure and is serialized into the
    tool result so the model can react on the next round.
    """

    def __init__(self, reason: str = "exit_loop") -> None:
        super().__init__(reason)
        self.reason = reason
