"""
Playwright Runner - Main Application Entry Point

FastAPI application that triggers Playwright runs, tracks their progress from
the child's output and serves a polling dashboard.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional, cast

import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from e2e_runner.api.error_handling import register_error_handlers
from e2e_runner.api.routes import auth, runner
from e2e_runner.config import settings
from e2e_runner.core.context import RunnerContext

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT,
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(settings.LOG_FILE)
        if settings.LOG_FILE
        else logging.NullHandler(),
    ],
)

logger = logging.getLogger(__name__)


class StatusPollFilter(logging.Filter):
    """Drop access-log lines for status and credential polling."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        return "GET /status" not in message and "GET /auth/consume" not in message


logging.getLogger("uvicorn.access").addFilter(StatusPollFilter())

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.globals.update({"app_name": "Playwright Runner"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    ctx: RunnerContext = app.state.runner
    logger.info("Playwright runner starting up...")
    logger.info("Project root: %s", ctx.project_root)
    logger.info("Tests directory: %s", ctx.tests_dir)
    logger.info(
        "Dashboard: http://%s:%s/ui", settings.APP_HOST, settings.APP_PORT
    )

    yield

    logger.info("Playwright runner shutting down...")
    try:
        await ctx.supervisor.shutdown(timeout_seconds=5.0)
    except Exception as e:
        logger.warning("Supervisor shutdown encountered an error: %s", e)


def create_app(context: Optional[RunnerContext] = None) -> FastAPI:
    app = FastAPI(
        title="Playwright Runner",
        description="Trigger Playwright runs and follow their progress live",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )
    app.state.runner = context or RunnerContext.from_settings(settings)

    if settings.APP_DEBUG:
        app.add_middleware(
            cast(Any, CORSMiddleware),
            allow_origins=settings.CORS_ORIGINS,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        logger.info("CORS enabled for origins: %s", settings.CORS_ORIGINS)

    register_error_handlers(app)

    @app.get("/ui", response_class=HTMLResponse, include_in_schema=False)
    async def dashboard(request: Request):
        """Live dashboard: test chooser, run state, results and logs."""
        ctx: RunnerContext = request.app.state.runner
        return templates.TemplateResponse(
            request,
            "pages/dashboard.html",
            {
                "default_base_domain": ctx.default_base_domain,
                "poll_interval_ms": 500,
            },
        )

    app.include_router(runner.router, tags=["runner"])
    app.include_router(auth.router, prefix="/auth", tags=["auth"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "e2e_runner.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.APP_RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )
