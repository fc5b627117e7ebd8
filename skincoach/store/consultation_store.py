from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from skincoach.models import Consultation, ConsultationStatus, RecommendationResult, SkinProfile


logger = logging.getLogger("skincoach.consultation-store")

_MAX_WATCH_RETRIES = 5


class ConsultationStore(Protocol):
    async def create(self, consultation: Consultation) -> Consultation: ...

    async def get(self, consultation_id: str) -> Optional[Consultation]: ...

    async def advance(
        self,
        consultation_id: str,
        status: ConsultationStatus,
        *,
        skin_profile: Optional[SkinProfile] = None,
        recommendation: Optional[RecommendationResult] = None,
        error_message: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> Consultation: ...

    async def close(self) -> None: ...


class ConsultationNotFound(KeyError):
    pass


def _normalize_id(consultation_id: str) -> str:
    if not isinstance(consultation_id, str):
        raise TypeError("consultation_id must be a string")
    normalized = consultation_id.strip()
    if not normalized:
        raise ValueError("consultation_id must be non-empty")
    if len(normalized) > 200:
        raise ValueError("consultation_id too long")
    return normalized


def _coerce_ttl_seconds(ttl_days: float) -> float:
    if ttl_days <= 0:
        return 0.0
    return ttl_days * 86400.0


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def _to_json_dict(consultation: Consultation) -> dict[str, Any]:
    return consultation.model_dump(mode="json")


class InMemoryConsultationStore(ConsultationStore):
    def __init__(self, *, default_ttl_days: float = 30.0) -> None:
        self._ttl_seconds = _coerce_ttl_seconds(default_ttl_days)
        self._lock = asyncio.Lock()
        self._items: dict[str, tuple[dict[str, Any], Optional[float]]] = {}

    def _expires_at(self) -> Optional[float]:
        return None if self._ttl_seconds <= 0 else time.monotonic() + self._ttl_seconds

    def _load_locked(self, key: str) -> Optional[Consultation]:
        record = self._items.get(key)
        if not record:
            return None
        data, expires_at = record
        if expires_at is not None and time.monotonic() >= expires_at:
            self._items.pop(key, None)
            return None
        return Consultation.model_validate(data)

    async def create(self, consultation: Consultation) -> Consultation:
        key = _normalize_id(consultation.id)
        async with self._lock:
            if self._load_locked(key) is not None:
                raise ValueError(f"consultation {key} already exists")
            self._items[key] = (_to_json_dict(consultation), self._expires_at())
        return consultation

    async def get(self, consultation_id: str) -> Optional[Consultation]:
        key = _normalize_id(consultation_id)
        async with self._lock:
            return self._load_locked(key)

    async def advance(
        self,
        consultation_id: str,
        status: ConsultationStatus,
        *,
        skin_profile: Optional[SkinProfile] = None,
        recommendation: Optional[RecommendationResult] = None,
        error_message: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> Consultation:
        key = _normalize_id(consultation_id)
        async with self._lock:
            current = self._load_locked(key)
            if current is None:
                raise ConsultationNotFound(key)
            updated = current.advance(
                status,
                skin_profile=skin_profile,
                recommendation=recommendation,
                error_message=error_message,
                attempts=attempts,
            )
            self._items[key] = (_to_json_dict(updated), self._expires_at())
        return updated

    async def close(self) -> None:
        return None


class RedisConsultationStore(ConsultationStore):
    def __init__(
        self,
        *,
        redis_url: Optional[str] = None,
        client: Optional[aioredis.Redis] = None,
        default_ttl_days: float = 30.0,
        connect_timeout_s: float = 1.0,
        socket_timeout_s: float = 1.0,
        key_prefix: str = "skincoach_consultation",
    ) -> None:
        self._ttl_seconds = int(max(1.0, _coerce_ttl_seconds(default_ttl_days))) if default_ttl_days > 0 else 0
        self._key_prefix = key_prefix.strip(":") or "skincoach_consultation"
        if client is not None:
            self._redis = client
        elif redis_url:
            self._redis = aioredis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=connect_timeout_s,
                socket_timeout=socket_timeout_s,
            )
        else:
            raise ValueError("redis_url or client is required")

    async def ping(self) -> None:
        await self._redis.ping()

    def _key(self, consultation_id: str) -> str:
        return f"{self._key_prefix}:{_normalize_id(consultation_id)}"

    @staticmethod
    def _decode(raw: Optional[str]) -> Optional[Consultation]:
        if not raw:
            return None
        try:
            obj = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("redis_consultation_parse_failed")
            return None
        if not isinstance(obj, dict):
            return None
        return Consultation.model_validate(obj)

    async def create(self, consultation: Consultation) -> Consultation:
        value = _json_dumps(_to_json_dict(consultation))
        created = await self._redis.set(
            self._key(consultation.id),
            value,
            ex=self._ttl_seconds or None,
            nx=True,
        )
        if not created:
            raise ValueError(f"consultation {consultation.id} already exists")
        return consultation

    async def get(self, consultation_id: str) -> Optional[Consultation]:
        return self._decode(await self._redis.get(self._key(consultation_id)))

    async def advance(
        self,
        consultation_id: str,
        status: ConsultationStatus,
        *,
        skin_profile: Optional[SkinProfile] = None,
        recommendation: Optional[RecommendationResult] = None,
        error_message: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> Consultation:
        key = self._key(consultation_id)
        for _ in range(_MAX_WATCH_RETRIES):
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(key)
                    current = self._decode(await pipe.get(key))
                    if current is None:
                        raise ConsultationNotFound(consultation_id)
                    updated = current.advance(
                        status,
                        skin_profile=skin_profile,
                        recommendation=recommendation,
                        error_message=error_message,
                        attempts=attempts,
                    )
                    pipe.multi()
                    pipe.set(key, _json_dumps(_to_json_dict(updated)), ex=self._ttl_seconds or None)
                    await pipe.execute()
                    return updated
                except WatchError:
                    logger.info("redis_consultation_watch_conflict id=%s", consultation_id)
                    continue
        raise RedisError(f"consultation {consultation_id} kept changing during update")

    async def close(self) -> None:
        await self._redis.aclose()


class PersistentConsultationStore(ConsultationStore):
    """Redis when reachable at startup, otherwise in-memory.

    The backend is chosen once in ``initialize``. Later redis errors are logged
    and raised to the caller; the store never switches backends mid-flight.
    """

    def __init__(
        self,
        *,
        redis_url: Optional[str] = None,
        redis_client: Optional[aioredis.Redis] = None,
        default_ttl_days: float = 30.0,
        connect_timeout_s: float = 1.0,
        socket_timeout_s: float = 1.0,
        key_prefix: str = "skincoach_consultation",
    ) -> None:
        self._redis_url = (redis_url or "").strip() or None
        self._redis_client = redis_client
        self._default_ttl_days = default_ttl_days
        self._connect_timeout_s = connect_timeout_s
        self._socket_timeout_s = socket_timeout_s
        self._key_prefix = key_prefix
        self._backend: ConsultationStore = InMemoryConsultationStore(default_ttl_days=default_ttl_days)
        self._backend_kind = "memory"

    @property
    def backend_kind(self) -> str:
        return self._backend_kind

    async def initialize(self) -> None:
        if not self._redis_url and self._redis_client is None:
            logger.info("consultation_store_backend=memory reason=missing_REDIS_URL")
            return

        try:
            redis_backend = RedisConsultationStore(
                redis_url=self._redis_url,
                client=self._redis_client,
                default_ttl_days=self._default_ttl_days,
                connect_timeout_s=self._connect_timeout_s,
                socket_timeout_s=self._socket_timeout_s,
                key_prefix=self._key_prefix,
            )
            await redis_backend.ping()
        except (RedisError, OSError) as exc:
            logger.warning("consultation_store_backend=memory reason=redis_unavailable err=%s", exc)
            return

        self._backend = redis_backend
        self._backend_kind = "redis"
        logger.info("consultation_store_backend=redis")

    async def create(self, consultation: Consultation) -> Consultation:
        try:
            return await self._backend.create(consultation)
        except RedisError as exc:
            logger.warning("consultation_store_create_failed backend=%s id=%s err=%s", self._backend_kind, consultation.id, exc)
            raise

    async def get(self, consultation_id: str) -> Optional[Consultation]:
        try:
            return await self._backend.get(consultation_id)
        except RedisError as exc:
            logger.warning("consultation_store_get_failed backend=%s id=%s err=%s", self._backend_kind, consultation_id, exc)
            raise

    async def advance(
        self,
        consultation_id: str,
        status: ConsultationStatus,
        *,
        skin_profile: Optional[SkinProfile] = None,
        recommendation: Optional[RecommendationResult] = None,
        error_message: Optional[str] = None,
        attempts: Optional[int] = None,
    ) -> Consultation:
        return await self._backend.advance(
            consultation_id,
            status,
            skin_profile=skin_profile,
            recommendation=recommendation,
            error_message=error_message,
            attempts=attempts,
        )

    async def close(self) -> None:
        await self._backend.close()
