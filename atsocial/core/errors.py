from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException


class SocialError(HTTPException):
    """Base for domain errors; controllers may let these propagate as-is."""

    status_code_default = 500

    def __init__(self, detail: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(status_code or self.status_code_default, detail)

    def __str__(self) -> str:
        return str(self.detail)


class NotFound(SocialError):
    status_code_default = 404


class Conflict(SocialError):
    status_code_default = 409


class AlreadyRegistered(Conflict):
    def __init__(self, linked_id: str) -> None:
        kind = linked_id.split(":", 1)[0] if ":" in linked_id else "identifier"
        label = "Email" if kind == "email" else "Identifier"
        super().__init__(f"{label} already registered")
        self.linked_id = linked_id


class InvalidReference(SocialError):
    status_code_default = 400


class StoreUnavailable(SocialError):
    status_code_default = 503

    def __init__(self, operation: str, reason: str = "") -> None:
        msg = f"Store call failed: {operation}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)
        self.operation = operation


class PartialFailure(SocialError):
    """Some steps of a multi-step operation committed and a later one failed.

    ``step`` names the failed step; ``result`` carries whatever the operation
    completed so an operator can remediate the rest by hand.
    """

    status_code_default = 502

    def __init__(self, step: str, reason: str, *, result: Any = None) -> None:
        super().__init__(f"{step} failed: {reason}")
        self.step = step
        self.reason = reason
        self.result = result
