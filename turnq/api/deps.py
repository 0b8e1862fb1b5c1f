from __future__ import annotations

from collections.abc import Generator

import redis
from fastapi import Depends, Header, Request

from turnq.config import Settings
from turnq.errors import ApiError, ErrorKind, TurnError
from turnq.infra.redis_client import create_redis
from turnq.turns.advancer import TurnAdvancer
from turnq.turns.base import RedisKeys


HOST_PIN_HEADER = "x-host-pin"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_redis(settings: Settings = Depends(get_settings)) -> Generator[redis.Redis, None, None]:
    try:
        client = create_redis(settings)
    except (redis.RedisError, ValueError) as e:
        raise ApiError(TurnError(kind=ErrorKind.dependency_failure, message=f"DB error(connect): {e}")) from e
    try:
        yield client
    finally:
        client.close()


def get_keys(settings: Settings = Depends(get_settings)) -> RedisKeys:
    return RedisKeys(prefix=settings.key_prefix)


def get_advancer(r: redis.Redis = Depends(get_redis), keys: RedisKeys = Depends(get_keys)) -> TurnAdvancer:
    return TurnAdvancer(r=r, keys=keys)


def require_host_pin(
    settings: Settings = Depends(get_settings),
    x_host_pin: str | None = Header(default=None, alias=HOST_PIN_HEADER),
) -> None:
    # No configured pin => the header is not required.
    if settings.host_pin and (x_host_pin or "") != settings.host_pin:
        raise ApiError(TurnError(kind=ErrorKind.auth, message="Host PIN does not match"))
