from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from api import maintenance_router, memories_router, upload_router
from config import Settings
from runtime_state import runtime_state


def _utc_iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@asynccontextmanager
async def lifespan(app: FastAPI):
    print("Food Memory API starting...")
    if app.state.settings is None:
        app.state.settings = Settings.from_env()
        _mount_local_blobs(app, app.state.settings)
    try:
        await runtime_state.ensure_started(app.state.settings)
        print("SQLite database initialized.")
    except Exception as e:
        print(f"Failed to initialize runtime: {e}")
        raise RuntimeError("Failed to initialize runtime during startup") from e

    yield

    print("Closing database and HTTP connections...")
    await runtime_state.shutdown()


def _mount_local_blobs(app: FastAPI, settings: Settings) -> None:
    if settings.blob_backend not in {"", "local"}:
        return
    if not settings.blob_public_base_url.startswith("/"):
        return
    root = Path(settings.blob_root)
    root.mkdir(parents=True, exist_ok=True)
    app.mount(settings.blob_public_base_url, StaticFiles(directory=root), name="blobs")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Without `settings` the app reads them from the environment when it
    starts, so importing this module needs no configuration.
    """
    app = FastAPI(
        title="Food Memory API",
        description="Location-tagged food photo journal",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(memories_router)
    app.include_router(upload_router)
    app.include_router(maintenance_router)
    if settings is not None:
        _mount_local_blobs(app, settings)

    @app.get("/")
    async def root():
        return {"message": "Food Memory API", "version": "1.0.0", "docs": "/docs"}

    @app.get("/health")
    async def health():
        payload: Dict[str, Any] = {"status": "ok", "timestamp": _utc_iso_now()}
        if not runtime_state.started:
            payload["status"] = "starting"
            return payload
        try:
            payload["memories"] = await runtime_state.sqlite_client.get_table_stats()
        except Exception as e:
            payload["status"] = "degraded"
            payload["reason"] = str(e)
        return payload

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
