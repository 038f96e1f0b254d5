"""FastAPI dependencies: injected services, bearer auth and rate limiting."""

import hmac

from fastapi import Header, HTTPException, Request, Response

from billing.ratelimit import RateLimitResult, rate_limit_login
from billing.services import BillingServices

JOB_RATE_LIMIT = 10
JOB_RATE_WINDOW_SECONDS = 60


def get_services(request: Request) -> BillingServices:
    return request.app.state.services


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _enforce(result: RateLimitResult, response: Response) -> RateLimitResult:
    if not result.success:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={
                "Retry-After": str(result.reset_in_seconds),
                "X-RateLimit-Remaining": "0",
            },
        )
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    return result


def rate_limit(scope: str, limit: int, window_seconds: int):
    """Dependency admitting ``limit`` requests per client IP per window."""

    def dependency(request: Request, response: Response) -> RateLimitResult:
        limiter = get_services(request).limiter
        return _enforce(limiter.hit(f"{scope}:{client_ip(request)}", limit, window_seconds), response)

    return dependency


def login_rate_limit(request: Request, response: Response) -> RateLimitResult:
    """Five attempts per client IP per fifteen minutes, for login endpoints."""
    return _enforce(rate_limit_login(get_services(request).limiter, client_ip(request)), response)


def require_cron_secret(request: Request, authorization: str | None = Header(default=None)) -> None:
    """Bearer-token check for scheduled triggers; open when no secret is configured."""
    secret = get_services(request).settings.cron_secret
    if not secret:
        return
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
