# Overview: Discriminated result envelope returned by public operations.

"""
Public operations never throw across their boundary: the outermost handler
wraps the call with run_operation() and callers check `success` before
trusting `data`. Expected failures (MarketplaceError) surface their message
verbatim; anything else is logged and replaced by a generic message.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app

from .errors import MarketplaceError

INTERNAL_ERROR_MESSAGE = "Internal server error"


@dataclass
class Result:
    success: bool
    data: Any = None
    error: str | None = None
    status_code: int = 200
    error_type: str | None = field(default=None, repr=False)

    @classmethod
    def ok(cls, data: Any = None, *, status_code: int = 200) -> "Result":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def fail(cls, error: str, *, status_code: int = 400, error_type: str | None = None) -> "Result":
        return cls(success=False, error=error, status_code=status_code, error_type=error_type)

    def to_dict(self) -> dict:
        body = {"success": self.success}
        if self.success:
            body["data"] = self.data
        else:
            body["error"] = self.error
        return body

    def to_response(self):
        """(body, status) pair accepted by Flask view functions."""
        return self.to_dict(), self.status_code


def run_operation(
    func: Callable[..., Any],
    *args,
    description: str = "operation",
    success_status: int = 200,
    **kwargs,
) -> Result:
    """Call `func` and convert its outcome into a Result."""
    try:
        data = func(*args, **kwargs)
    except MarketplaceError as e:
        return Result.fail(str(e), status_code=e.status_code, error_type=type(e).__name__)
    except Exception:
        current_app.logger.exception("Failed to %s", description)
        return Result.fail(INTERNAL_ERROR_MESSAGE, status_code=500, error_type="InternalError")
    return Result.ok(data, status_code=success_status)
