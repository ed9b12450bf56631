# dependencies.py

from fastapi import HTTPException, Request, status
import logging

logger = logging.getLogger(__name__)


async def client_address(request: Request) -> str:
    settings = request.app.state.settings
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


async def enforce_rate_limit(request: Request):
    """Reject the request before its body is read when the client is over the limit."""
    address = await client_address(request)
    if not request.app.state.rate_limiter.hit(address):
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests from this IP, please try again later"
        )
    return address


def get_settings(request: Request):
    return request.app.state.settings


def get_runner(request: Request):
    return request.app.state.runner
