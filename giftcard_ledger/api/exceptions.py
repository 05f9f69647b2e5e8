from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..core.errors import GiftCardError


def error_payload(exc: GiftCardError) -> dict[str, str]:
    return {"detail": str(exc), "code": exc.code}


def register_exception_handlers(app: FastAPI) -> None:
    """Translate ledger errors into JSON responses on a host application.

    Each error class carries its own status code and a stable ``code`` so
    clients can branch without parsing messages.
    """

    @app.exception_handler(GiftCardError)
    async def giftcard_error_handler(
        request: Request, exc: GiftCardError
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=error_payload(exc))
