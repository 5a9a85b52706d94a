"""Exception hierarchy shared by every scriptenv subsystem."""

from __future__ import annotations


class ScriptenvError(Exception):
    """Base exception for scriptenv operations.

    Attributes:
        message: Human-readable error description.
        command: The command that failed (if applicable).
        stderr: Standard error output from the failed command (if available).

    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        stderr: str | None = None,
    ) -> None:
        """Initialize ScriptenvError.

        Args:
            message: Human-readable error description.
            command: The command that failed (if applicable).
            stderr: Standard error output from the failed command.

        """
        self.message = message
        self.command = command
        self.stderr = stderr
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [self.message]
        if self.command:
            parts.append(f"Command: {self.command}")
        if self.stderr:
            parts.append(f"Stderr: {self.stderr}")
        return "\n".join(parts)


class ConfigurationError(ScriptenvError):
    """Raised when configuration loading or validation fails."""

    pass


class MetadataError(ScriptenvError):
    """Raised when an inline script metadata block is malformed."""

    pass


class RequirementError(ScriptenvError):
    """Raised for an unparseable requirement string."""

    pass


class InterpreterNotFoundError(ScriptenvError):
    """Raised when no interpreter satisfies a Python request."""

    pass


class EnvironmentBuildError(ScriptenvError):
    """Raised when a virtual environment cannot be created."""

    pass


class InstallError(ScriptenvError):
    """Raised when installing packages into an environment fails."""

    pass


class LockError(ScriptenvError):
    """Raised when a script lock file is missing, stale, or unreadable."""

    pass


class ProjectError(ScriptenvError):
    """Raised when an enclosing project cannot be read."""

    pass
