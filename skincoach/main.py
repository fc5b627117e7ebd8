from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI

from skincoach.config import Settings
from skincoach.routes.health import SERVICE_VERSION, router as health_router
from skincoach.routes.v1 import router as v1_router
from skincoach.services.catalog import CatalogProvider
from skincoach.services.vision_client import VisionClient
from skincoach.wiring import build_services


logger = logging.getLogger("skincoach.main")


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    vision_client: Optional[VisionClient] = None,
    catalog: Optional[CatalogProvider] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    _setup_logging(settings.log_level)
    services = build_services(settings, vision_client=vision_client, catalog=catalog)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.store.initialize()
        logger.info(
            "skincoach_started vision_provider=%s catalog=%s store=%s",
            settings.vision_provider,
            services.catalog.kind,
            services.store.backend_kind,
        )
        try:
            yield
        finally:
            await services.dispatcher.drain()
            await services.store.close()

    app = FastAPI(title="SkinCoach Analysis Service", version=SERVICE_VERSION, lifespan=lifespan)
    app.state.services = services

    app.include_router(health_router)
    app.include_router(v1_router, prefix="/v1")

    return app
