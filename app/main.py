from fastapi import FastAPI
from app.settings import settings
from app.logging import configure_logging
from app.error_handlers import attach_error_handlers
from app.runtime import build_runtime
from api.router import api_router
from infra.db.session import init_db

configure_logging()
app = FastAPI(title=settings.APP_NAME)


@app.on_event("startup")
async def _on_startup():
    init_db()
    app.state.runtime = build_runtime(settings)
    app.state.runtime.worker.start()


@app.on_event("shutdown")
async def _on_shutdown():
    runtime = getattr(app.state, "runtime", None)
    if runtime is not None:
        await runtime.worker.stop()


attach_error_handlers(app)
app.include_router(api_router)
