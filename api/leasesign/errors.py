"""Domain exceptions for the signing workflow and their FastAPI handlers."""

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base application error, rendered as ``{code, message, **details}``."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, **self.details}


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any = None):
        msg = f"{entity} not found" if entity_id is None else f"{entity} '{entity_id}' not found"
        super().__init__(msg)


class IncompleteProfileError(AppError):
    """A lease's tenants lack fields required for a valid signature.

    ``incomplete`` is a list of ``{"name": ..., "missing": [...]}`` entries.
    """

    status_code = 422
    code = "INCOMPLETE_PROFILE"

    def __init__(self, incomplete: list[dict[str, Any]]):
        lines = [f"- {x['name']}: {', '.join(x['missing'])}" for x in incomplete]
        super().__init__(
            "Cannot sign: tenant information incomplete.\n" + "\n".join(lines),
            {"tenants": incomplete},
        )
        self.incomplete = incomplete


class AmbiguousIdentityError(AppError):
    """The signing tenant could not be resolved; ``candidates`` lets the caller re-prompt."""

    status_code = 409
    code = "AMBIGUOUS_IDENTITY"

    def __init__(self, candidates: list[dict[str, Any]]):
        super().__init__(
            "tenant_id is required when the lease has several tenants",
            {"tenants": candidates},
        )
        self.candidates = candidates


class UnknownTenantError(AppError):
    status_code = 400
    code = "UNKNOWN_TENANT"

    def __init__(self, tenant_id: Any):
        super().__init__(f"tenant {tenant_id} is not a tenant of this lease", {"tenantId": tenant_id})


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class ExternalServiceError(AppError):
    """PDF rendering/merge or storage failure."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
