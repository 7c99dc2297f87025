"""Exception taxonomy for parsing, validation and execution failures."""

from typing import Optional


class LoomError(Exception):
    """Base class for every engine error."""


class ParseError(LoomError):
    """Model text contained something task-shaped that could not be decoded."""


class ValidationError(LoomError):
    """A single task is missing a required field or carries an invalid value."""

    def __init__(self, message: str, field: str = ""):
        super().__init__(message)
        self.field = field


class SecurityError(LoomError):
    """A path resolved outside the workspace root."""


class EditSafetyError(LoomError):
    """An edit was refused because it could corrupt the file."""

    def __init__(self, message: str, contextual_error=None):
        super().__init__(message)
        # models.ContextualError with file context for the model, when available
        self.contextual_error = contextual_error


class ApplyError(LoomError):
    """Writing a file or running the patch tool failed."""


class ShellTimeout(LoomError):
    def __init__(self, timeout: int, output: Optional[str] = None):
        super().__init__(f"command timed out after {timeout} seconds")
        self.timeout = timeout
        self.output = output or ""
