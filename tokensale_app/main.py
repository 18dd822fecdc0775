from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tokensale_app.api.routes import router as api_router
from tokensale_app.audit import configure_logging
from tokensale_app.auth import COOKIE_NAME, SessionStore, verify_credentials
from tokensale_app.config import SaleConfig, load_config
from tokensale_app.engine import TokenSaleEngine, build_engine
from tokensale_app.schemas import LoginRequest
from tokensale_app.utils.json_safety import SafeJSONResponse

# ── Prefix guarded by the admin session cookie ──
_ADMIN_PREFIX = "/api/admin"

auth_router = APIRouter(prefix="/auth")


@auth_router.post("/login")
async def auth_login(request: Request, data: LoginRequest):
    config: SaleConfig = request.app.state.engine.config
    if not verify_credentials(data.username, data.password, config):
        return JSONResponse({"detail": "Invalid username or password."}, status_code=401)

    resp = JSONResponse({"ok": True})
    resp.set_cookie(
        key=COOKIE_NAME,
        value=request.app.state.sessions.issue(),
        max_age=config.session_ttl_seconds,
        httponly=True,
        samesite="strict",
        path="/",
    )
    return resp


@auth_router.post("/logout")
async def auth_logout(request: Request):
    request.app.state.sessions.revoke(request.cookies.get(COOKIE_NAME))
    resp = JSONResponse({"ok": True})
    resp.delete_cookie(key=COOKIE_NAME, path="/")
    return resp


def create_app(config: Optional[SaleConfig] = None, engine: Optional[TokenSaleEngine] = None) -> FastAPI:
    """Build the API around one engine. Scheduler, admin routes and CLI share its run lock."""
    if engine is None:
        engine = build_engine(config or load_config())

    app = FastAPI(
        title="Token Sale Settlement Engine",
        default_response_class=SafeJSONResponse,
    )
    app.state.engine = engine
    app.state.sessions = SessionStore(engine.config.session_ttl_seconds)

    @app.middleware("http")
    async def require_admin_session(request: Request, call_next):
        if request.url.path.startswith(_ADMIN_PREFIX):
            if not request.app.state.sessions.is_valid(request.cookies.get(COOKIE_NAME)):
                return JSONResponse({"detail": "Not authenticated"}, status_code=401)
        return await call_next(request)

    # Local operator console only.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://127.0.0.1:8000", "http://localhost:8000"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        allow_credentials=True,
    )

    app.include_router(auth_router)
    app.include_router(api_router, prefix="/api")
    return app


def run():
    import uvicorn

    config = load_config()
    configure_logging(config.audit_log_dir)
    uvicorn.run(create_app(config), host="127.0.0.1", port=8000)
