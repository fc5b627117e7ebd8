from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from skincoach.config import Settings
from skincoach.services.catalog import CatalogProvider, build_catalog
from skincoach.services.pipeline import ConsultationPipeline, PipelineDispatcher
from skincoach.services.recommendation import RecommendationEngine
from skincoach.services.vision import VisionAnalyzer
from skincoach.services.vision_client import VisionClient, build_vision_client
from skincoach.store.consultation_store import PersistentConsultationStore


@dataclass
class Services:
    settings: Settings
    store: PersistentConsultationStore
    catalog: CatalogProvider
    analyzer: VisionAnalyzer
    engine: RecommendationEngine
    pipeline: ConsultationPipeline
    dispatcher: PipelineDispatcher


def build_services(
    settings: Settings,
    *,
    vision_client: Optional[VisionClient] = None,
    catalog: Optional[CatalogProvider] = None,
) -> Services:
    store = PersistentConsultationStore(
        redis_url=settings.redis_url,
        default_ttl_days=settings.consultation_ttl_days,
    )
    catalog = catalog if catalog is not None else build_catalog(settings)
    analyzer = VisionAnalyzer(vision_client if vision_client is not None else build_vision_client(settings))
    engine = RecommendationEngine()
    pipeline = ConsultationPipeline(store=store, analyzer=analyzer, engine=engine, catalog=catalog)
    return Services(
        settings=settings,
        store=store,
        catalog=catalog,
        analyzer=analyzer,
        engine=engine,
        pipeline=pipeline,
        dispatcher=PipelineDispatcher(pipeline),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
