from __future__ import annotations

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from mint_engine.api.routes import auth, gallery, health, mint, tasks
from mint_engine.config import get_settings
from mint_engine.core.exceptions import MintError, global_exception_handler, http_exception_handler, mint_error_handler, request_validation_exception_handler
from mint_engine.core.lifespan import lifespan
from mint_engine.core.middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware

settings = get_settings()

app = FastAPI(title="mint-engine", version=health.VERSION, lifespan=lifespan, docs_url=None, redoc_url=None, openapi_url=None)

app.add_middleware(CORSMiddleware, allow_origins=settings.allowed_origins, allow_credentials=True, allow_methods=["GET", "POST", "OPTIONS"], allow_headers=["content-type", "authorization"], expose_headers=["content-length", "x-request-id"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(MintError, mint_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

app.include_router(health.router, tags=["health"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(mint.router, prefix="/api/mint", tags=["mint"])
app.include_router(gallery.router, prefix="/api/cyphers", tags=["gallery"])
app.include_router(tasks.router, prefix="/internal", tags=["tasks"])
