from __future__ import annotations

from collections.abc import Awaitable, Callable
from uuid import uuid4

import structlog
from fastapi import FastAPI, HTTPException, Request, Response

from churchhub.api.routers import auth, churches, invite_links, members, public
from churchhub.infra.db import check_db_ready
from churchhub.infra.logging import configure_logging

configure_logging()

app = FastAPI(
    title="churchhub",
    description="Multi-tenant church management: tenancy, roles, permissions and invite links.",
    version="0.1.0",
)


@app.middleware("http")
async def bind_request_context(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request.headers.get("x-request-id") or str(uuid4()),
        method=request.method,
        path=request.url.path,
    )
    return await call_next(request)


app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(churches.router, prefix="/api/churches", tags=["churches"])
app.include_router(members.router, prefix="/api/members", tags=["members"])
app.include_router(invite_links.router, prefix="/api/invite-links", tags=["invite-links"])
app.include_router(public.router, prefix="/api/public", tags=["public"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
