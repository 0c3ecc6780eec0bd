"""reqchain errors - one exception type per failure class of the engine."""


class ReqchainError(Exception):
    """Base class for every error raised by reqchain.

    ``path`` names the request file the error belongs to, when known.
    """

    def __init__(self, message: str, path: str | None = None):
        super().__init__(message)
        self.path = path


class ParseError(ReqchainError):
    """Bad request file, bad @depends syntax, or missing dependency file."""


class CycleError(ReqchainError):
    """A request file depends on itself, directly or transitively."""

    def __init__(self, path: str, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Circular dependency detected: {' → '.join(cycle)}", path)


class ShellError(ReqchainError):
    """A $(command) fragment exited non-zero or timed out."""

    def __init__(self, command: str, message: str):
        self.command = command
        super().__init__(f"$({command}): {message}")


class VariableRangeError(ReqchainError):
    """A multi-value variable's active index does not point at an option."""

    def __init__(
        self,
        name: str,
        message: str,
        path: str | None = None,
        step: str | None = None,
    ):
        self.name = name
        self.detail = message
        text = f"variable '{name}': {message}"
        super().__init__(f"{step}: {text}" if step else text, path)


class ExtractionError(ReqchainError):
    """An @extract directive could not produce a value."""


class RequestError(ReqchainError):
    """The request executor reported a transport failure."""


class ChainCancelled(ReqchainError):
    """The caller cancelled a running chain."""


class ConfigError(ReqchainError):
    """Malformed config, profile or session file."""
