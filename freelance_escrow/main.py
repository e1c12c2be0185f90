"""FastAPI application entry point."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from freelance_escrow.config import settings
from freelance_escrow.errors import EscrowError, escrow_error_handler
from freelance_escrow.routers import escrow, milestones

logger = logging.getLogger(__name__)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and path ids use the same envelope as service errors."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "status": False,
            "message": f"{field}: {message}" if field else message,
            "error": "invalid_argument",
        },
    )


app = FastAPI(
    title="Freelance Escrow",
    description="Milestone-based escrow payments for freelance projects",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(EscrowError, escrow_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)

app.include_router(escrow.router)
app.include_router(milestones.router)

if settings.env == "production" and not settings.gateway_is_live:
    logger.warning("Running in production with the sandbox payment gateway")


@app.get("/health")
async def health() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}
