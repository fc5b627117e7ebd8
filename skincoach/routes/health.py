from __future__ import annotations

from fastapi import APIRouter, Depends

from skincoach.wiring import Services, get_services

router = APIRouter()

SERVICE_NAME = "skincoach-analysis"
SERVICE_VERSION = "0.1.0"


@router.get("/healthz")
def healthz(services: Services = Depends(get_services)):
    settings = services.settings
    return {
        "ok": True,
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "commit_sha": settings.commit_sha,
        "consultation_store_backend": services.store.backend_kind,
        "catalog_backend": services.catalog.kind,
        "vision_provider": settings.vision_provider,
        "pipelines_in_flight": services.dispatcher.pending,
    }
