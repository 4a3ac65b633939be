"""Exception hierarchy for self-refer."""

from typing import Optional


class SelfReferError(Exception):
    """Base class for every error the CLI reports to the user."""

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class ContentNotFoundError(SelfReferError):
    """Raised when an id or keyword lookup matches no record."""

    def __init__(self, kind: str, reference: str) -> None:
        super().__init__(
            f"{kind} not found: {reference}",
            hint=f"Use the 'list' command to see available {kind.lower()} entries",
        )
        self.kind = kind
        self.reference = reference


class StoreError(SelfReferError):
    """Raised when reading or writing a markdown record fails."""
    pass


class SetupError(SelfReferError):
    """Raised when project initialization cannot complete."""
    pass


class SessionNotFoundError(SelfReferError):
    """Raised when no session log can be located for the current project."""
    pass


__all__ = [
    "SelfReferError",
    "ContentNotFoundError",
    "StoreError",
    "SetupError",
    "SessionNotFoundError",
]
