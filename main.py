from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
import os

from core.config import logger, APP_NAME, FRONTEND_ORIGIN  # type: ignore

# Routers
from routers import auth, mfa, credentials, account, relay, pages  # type: ignore

app = FastAPI(title=APP_NAME)

# ---- CORS setup ----
# Prefer ALLOWED_ORIGINS, but also support the legacy CORS_ORIGINS name
_default_origins = ",".join([
    FRONTEND_ORIGIN,
    "http://localhost:8000",
    "http://127.0.0.1:8000",
])
_origins_env = os.getenv("ALLOWED_ORIGINS") or os.getenv("CORS_ORIGINS") or _default_origins
ALLOWED_ORIGINS = [o.strip() for o in _origins_env.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Security headers ---
@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    try:
        response.headers.setdefault("Strict-Transport-Security", "max-age=63072000; includeSubDomains; preload")
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")

        # Pages carry small inline scripts (copy to clipboard, show/hide)
        csp = (
            "default-src 'self'; "
            "img-src 'self' data:; "
            "style-src 'self' 'unsafe-inline'; "
            "script-src 'self' 'unsafe-inline'; "
            "connect-src 'self'; "
            "object-src 'none'; "
            "base-uri 'self'; "
            "form-action 'self'; "
            "frame-ancestors 'none'"
        )
        response.headers["Content-Security-Policy"] = csp
        if request.url.path.startswith("/api/") or request.url.path in ("/passwords", "/verify-otp"):
            response.headers["Cache-Control"] = "no-store"
    except Exception as ex:
        logger.warning(f"security headers failed: {ex}")
    return response


app.include_router(auth.router)
app.include_router(mfa.router)
app.include_router(credentials.router)
app.include_router(account.router)
app.include_router(relay.router)
app.include_router(pages.router)


@app.on_event("startup")
async def _init_schema():
    try:
        from core.database import init_db
        init_db()
    except Exception as _ex:
        logger.warning(f"init_db failed: {_ex}")


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": APP_NAME}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        if request.url.path.startswith("/api/"):
            return JSONResponse({"error": "Not Found"}, status_code=404)
        logger.info(f"[404] {request.url.path}")
        return pages.render_page(request, "not_found.html", status_code=404, path=request.url.path)
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)
