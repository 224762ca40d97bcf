from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatapi.core.errors import Internal
from chatapi.core.settings import S
from chatapi.metrics import metrics_endpoint, metrics_middleware, set_app_info
from chatapi.routers.auth import router as auth_router
from chatapi.routers.chat import router as chat_router
from chatapi.routers.misc import router as misc_router
from chatapi.routers.todos import router as todos_router
from chatapi.services.audit import audit_event


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    audit_event(
        "store_failure",
        getattr(request.state, "account_id", None) or "-",
        request,
        outcome="error",
        path=request.url.path,
        reason=f"{type(exc).__name__}: {exc}",
    )
    err = Internal()
    return JSONResponse(status_code=err.status_code, content={"detail": err.detail})


def create_app() -> FastAPI:
    app = FastAPI(title="Chat backend", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[o.strip() for o in S.cors_origins.split(",") if o.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if S.metrics_enabled:
        app.middleware("http")(metrics_middleware)
        set_app_info(app.title, app.version)
        app.get("/metrics")(metrics_endpoint)

    app.add_exception_handler(ClientError, store_error_handler)
    app.add_exception_handler(BotoCoreError, store_error_handler)

    app.include_router(auth_router)
    app.include_router(chat_router)
    app.include_router(todos_router)
    app.include_router(misc_router)

    return app

app = create_app()
