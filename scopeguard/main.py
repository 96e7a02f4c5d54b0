from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from scopeguard.authz.policy import load_policy_config
from scopeguard.db import filters as _filters  # noqa: F401  (register tenant filter)
from scopeguard.db.init_db import init_db
from scopeguard.errors import register_exception_handlers
from scopeguard.logging_config import configure_app_logging
from scopeguard.routers import auth, documents, health, memberships, notifications, projects, resource_requests
from scopeguard.security.dependencies import enforce_authentication
from scopeguard.settings import get_settings

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        settings = get_settings()
        configure_app_logging(settings.log_level)
        logger.info("App startup beginning")

        policy_path = settings.resolved_policy_config_path()
        app.state.policy = load_policy_config(policy_path)
        logger.info("Loaded policy config: %s", policy_path)
        init_db()
        logger.info("Database initialized (tables ensured + seed if needed)")

        yield

    # Global dependency: every route authenticates unless the policy lists it as public.
    app = FastAPI(title="scopeguard", dependencies=[Depends(enforce_authentication)], lifespan=lifespan)
    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(projects.router)
    app.include_router(memberships.router)
    app.include_router(documents.router)
    app.include_router(resource_requests.router)
    app.include_router(notifications.router)

    return app


app = create_app()
