"""
Tetris Web API - Accounts, Settings and Scores
==============================================
FastAPI service the game client reports to.

The game itself runs entirely on the client; this service only stores
accounts, key maps and finished-game stats.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request, Depends, Header
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pydantic import BaseModel, Field, field_validator
from starlette.concurrency import run_in_threadpool
from typing import Optional, Dict
import asyncpg
import logging
import secrets

from tetris_arcade.config import Settings, configure_logging
from tetris_arcade.policies.key_bindings import KeyMapValidator
from tetris_arcade.web.password_utils import hash_password, verify_password
from tetris_arcade.web.storage import (
    PostgresScoreStore,
    MemoryScoreStore,
    UserExistsError,
    initialize_schema,
)

logger = logging.getLogger(__name__)

# bcrypt only hashes the first 72 bytes and newer releases reject longer input
MAX_PASSWORD_BYTES = 72


# =============================================================================
# API Models
# =============================================================================

class Credentials(BaseModel):
    username: str = Field(min_length=1, max_length=40)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("password")
    @classmethod
    def fits_bcrypt(cls, value: str) -> str:
        if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValueError(f"must be at most {MAX_PASSWORD_BYTES} bytes")
        return value


class SettingsUpdate(BaseModel):
    keyMap: Dict[str, str]


class Breakdown(BaseModel):
    singles: int = Field(default=0, ge=0)
    doubles: int = Field(default=0, ge=0)
    triples: int = Field(default=0, ge=0)
    tetris: int = Field(default=0, ge=0)


class StatsSubmission(BaseModel):
    score: int = Field(ge=0)
    lines: int = Field(ge=0)
    level: int = Field(ge=1)
    time: int = Field(ge=0)
    breakdown: Breakdown = Field(default_factory=Breakdown)


# =============================================================================
# Dependencies
# =============================================================================

def get_store(request: Request):
    return request.app.state.store


async def current_user(
    authorization: Optional[str] = Header(default=None),
    store=Depends(get_store)
) -> str:
    """Resolve the bearer token to a username"""
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(401, "Token required")

    username = await store.user_for_token(authorization[len("Bearer "):].strip())
    if username is None:
        raise HTTPException(401, "Invalid token")
    return username


# =============================================================================
# FastAPI App
# =============================================================================

def create_app(store=None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the service

    Args:
        store: storage backend; when omitted one is opened at startup
            according to settings.storage
    """
    settings = settings or Settings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.store is None
        if owned:
            if settings.storage == "memory":
                app.state.store = MemoryScoreStore()
            else:
                pool = await asyncpg.create_pool(settings.database_url)
                await initialize_schema(pool)
                app.state.store = PostgresScoreStore(pool)
            logger.info("Score store ready (%s)", settings.storage)
        yield
        if owned:
            await app.state.store.close()
            app.state.store = None

    app = FastAPI(
        title="Tetris Arcade",
        description="Accounts, key bindings and score history for Tetris Arcade",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.store = store
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("%s %s", request.method, request.url.path)
        return await call_next(request)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"success": False, "error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())[1:])
        message = f"Invalid {field}: {first.get('msg', 'bad value')}" if field else "Invalid request"
        return JSONResponse({"success": False, "error": message}, status_code=400)

    @app.exception_handler(Exception)
    async def unhandled_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)

    @app.get("/health")
    async def health():
        """Health check"""
        return {"status": "healthy", "service": "tetris-arcade"}

    # --- public routes ---

    @app.post("/api/auth/register", status_code=201)
    async def register(credentials: Credentials, store=Depends(get_store)):
        try:
            password_hash = await run_in_threadpool(hash_password, credentials.password)
            await store.create_user(credentials.username, password_hash)
        except UserExistsError:
            raise HTTPException(409, "Username already taken")

        logger.info("Registered user %s", credentials.username)
        return {"success": True, "message": "User registered"}

    @app.post("/api/auth/login")
    async def login(credentials: Credentials, store=Depends(get_store)):
        user = await store.get_user(credentials.username)
        if user is None or not await run_in_threadpool(
            verify_password, credentials.password, user["password_hash"]
        ):
            raise HTTPException(401, "Invalid username or password")

        token = secrets.token_urlsafe(32)
        await store.create_session(token, user["username"])
        return {"success": True, "token": token, "username": user["username"]}

    @app.get("/api/leaderboard")
    async def leaderboard(store=Depends(get_store)):
        data = await store.leaderboard(settings.leaderboard_limit)
        return {"success": True, "data": data}

    # --- private routes (bearer token) ---

    @app.get("/api/user/profile")
    async def profile(username: str = Depends(current_user), store=Depends(get_store)):
        user = await store.get_user(username)
        stats = await store.profile_stats(username)
        return {
            "success": True,
            "data": {"username": username, "keyMap": user["key_map"], **stats}
        }

    @app.put("/api/user/settings")
    async def update_settings(
        update: SettingsUpdate,
        username: str = Depends(current_user),
        store=Depends(get_store)
    ):
        result = KeyMapValidator().validate(update.keyMap)
        if not result.approved:
            raise HTTPException(400, result.reason)

        await store.save_key_map(username, update.keyMap)
        return {"success": True, "message": "Settings saved"}

    @app.post("/api/stats", status_code=201)
    async def save_stats(
        stats: StatsSubmission,
        username: str = Depends(current_user),
        store=Depends(get_store)
    ):
        await store.add_score(username, stats.model_dump())
        logger.info("Saved game for %s: score=%d lines=%d", username, stats.score, stats.lines)
        return {"success": True, "message": "Stats saved"}

    @app.delete("/api/analytics/reset")
    async def reset_history(username: str = Depends(current_user), store=Depends(get_store)):
        deleted = await store.reset_scores(username)
        return {"success": True, "deleted": deleted}

    return app


app = create_app()


def main():
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings=settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
