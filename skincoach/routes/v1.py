from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from redis.exceptions import RedisError

from skincoach.errors import RecommendationError, ValidationError
from skincoach.models import SkinProfile
from skincoach.services.images import MAX_IMAGE_BYTES
from skincoach.services.safety import sanitize
from skincoach.wiring import Services, get_services


router = APIRouter()

logger = logging.getLogger("skincoach.v1")


async def _read_upload(upload: UploadFile) -> bytes:
    # Read one byte past the cap so oversize uploads are rejected without
    # buffering arbitrarily large bodies.
    blob = await upload.read(MAX_IMAGE_BYTES + 1)
    await upload.close()
    return blob


@router.post("/consultations", status_code=202)
async def create_consultation(
    photo: Optional[UploadFile] = File(default=None),
    text: Optional[str] = Form(default=None),
    services: Services = Depends(get_services),
):
    if photo is None:
        raise HTTPException(status_code=400, detail="Missing photo")

    blob = await _read_upload(photo)
    try:
        consultation, image = await services.pipeline.submit(blob, content_type=photo.content_type, user_text=text)
    except ValidationError as exc:
        logger.info("consultation_rejected reason=%s", exc.message)
        raise HTTPException(status_code=400, detail=exc.message) from exc
    except RedisError as exc:
        raise HTTPException(status_code=503, detail="Consultation store unavailable") from exc

    services.dispatcher.dispatch(consultation.id, image)
    return {"id": consultation.id, "status": consultation.status.value}


@router.get("/consultations/{consultation_id}")
async def consultation_status(consultation_id: str, services: Services = Depends(get_services)):
    try:
        consultation = await services.store.get(consultation_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RedisError as exc:
        raise HTTPException(status_code=503, detail="Consultation store unavailable") from exc
    if consultation is None:
        raise HTTPException(status_code=404, detail="Consultation not found")
    return consultation.status_payload()


@router.post("/recommendations")
async def recommendations(profile: SkinProfile, services: Services = Depends(get_services)):
    try:
        result = await services.pipeline.recommend(sanitize(profile))
    except RecommendationError as exc:
        logger.warning("recommendations_failed err=%s", exc.message)
        raise HTTPException(status_code=502, detail=exc.message) from exc
    return result.model_dump(mode="json")
