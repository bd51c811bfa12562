from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from covergen.api.routes import router as api_router
from covergen.core.runtime import Runtime, build_runtime
from covergen.db.init import init_database


def create_app(runtime: Runtime | None = None) -> FastAPI:
    runtime = runtime or build_runtime()
    settings = runtime.settings

    app = FastAPI(title=settings.app_name)
    app.state.runtime = runtime
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def _startup() -> None:
        init_database()
        runtime.worker.recover()
        if settings.worker_autostart:
            runtime.worker.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        runtime.worker.stop()

    @app.get("/health")
    def health() -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "worker_running": runtime.worker.is_running,
                "queued_jobs": len(runtime.worker.queued_ids()),
            }
        )

    app.include_router(api_router)
    return app
