"""
Exception taxonomy for refdesk.

Configuration problems surface as :class:`ValidationError` before any state changes.  Errors that
abort a single turn (:class:`ParseError`, :class:`UnknownToolError`) are handled by the agent loop;
everything else propagates to the caller, which decides how to degrade.
"""


class RefdeskError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(RefdeskError, ValueError):
    """Raised when a configuration value is rejected (e.g. buffer size > context window)."""


class ParseError(RefdeskError):
    """Raised when model output cannot be turned into a final answer or a tool action."""

    def __init__(self, message: str, raw_text: str | None = None) -> None:
        super().__init__(message)
        self.raw_text = raw_text


class UnknownToolError(RefdeskError):
    """Raised when the model asks for a tool that is not registered with the loop."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool '{tool_name}' is not registered.")
        self.tool_name = tool_name


class LoopLimitExceededError(RefdeskError):
    """Raised when the reasoning loop uses up its tool rounds without a final answer."""

    def __init__(self, limit: int) -> None:
        super().__init__(f"Too many LLM calls (limit {limit}); possible infinite loop.")
        self.limit = limit


class CircuitOpenError(RefdeskError):
    """Raised without invoking the operation while its circuit breaker is open."""

    def __init__(self, operation_name: str) -> None:
        super().__init__(f"Circuit breaker is OPEN for {operation_name}")
        self.operation_name = operation_name


class OperationTimeoutError(RefdeskError, TimeoutError):
    """A single attempt did not complete within its time budget."""


class ResilienceExhaustedError(RefdeskError):
    """Raised when every attempt of a protected operation failed.

    The last observed error is available as ``last_error`` and as ``__cause__``.
    """

    def __init__(self, operation_name: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{operation_name} failed after {attempts} attempt(s): {last_error}")
        self.operation_name = operation_name
        self.attempts = attempts
        self.last_error = last_error


class ModelResponseError(RefdeskError):
    """Raised when a model back-end returns no usable content."""


class UnknownMessageKindError(RefdeskError):
    """Raised when the dispatcher has no handler for a message kind."""

    def __init__(self, kind: str) -> None:
        super().__init__(f"No handler registered for message kind '{kind}'")
        self.kind = kind
