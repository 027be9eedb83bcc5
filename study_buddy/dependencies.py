"""
Study Buddy Matchmaker - Route Dependencies
"""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from starlette.requests import HTTPConnection

from study_buddy.errors import RateLimited
from study_buddy.services.container import Services


def get_services(conn: HTTPConnection) -> Services:
    """Services built during startup (works for HTTP and WebSocket routes)"""
    return conn.app.state.services


def client_address(conn: HTTPConnection) -> Optional[str]:
    # Try headers first (supports proxies), then client host
    xff = conn.headers.get("x-forwarded-for")
    return (xff.split(",")[0].strip() if xff else None) or (conn.client.host if conn.client else None)


def get_db(services: Services = Depends(get_services)):
    """Dependency for database session"""
    db = services.db_sessions()
    try:
        yield db
    finally:
        db.close()


def rate_limit(*policies: str):
    """Dependency factory gating a route behind one or more rate-limit policies"""

    async def _check(request: Request, services: Services = Depends(get_services)) -> None:
        address = client_address(request) or "unknown"
        try:
            await services.rate_limiter.check_all(policies, address)
        except RateLimited as exc:
            raise HTTPException(
                status_code=429,
                detail="Too many requests, please try again later.",
                headers={"Retry-After": str(exc.retry_after)},
            )

    return _check
