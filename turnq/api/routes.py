from __future__ import annotations

import logging
import random

import redis
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from turnq.api.deps import get_advancer, get_keys, get_redis, require_host_pin
from turnq.api.models import (
    ActionLogResponse,
    AdvanceRequest,
    AdvanceResponse,
    ErrorResponse,
    InitSessionRequest,
    SessionStateView,
    SessionStatsResponse,
    SessionView,
)
from turnq.errors import ErrorKind, TurnError
from turnq.session_setup import initialize_session
from turnq.turns.advancer import AdvanceCommand, TurnAdvancer
from turnq.turns.audit import ActionAuditLog
from turnq.turns.base import RedisKeys
from turnq.turns.entry_queue import EntryQueue
from turnq.turns.state_store import SessionStateStore
from turnq.turns.stats import StatisticsCounters


logger = logging.getLogger(__name__)

router = APIRouter()

_REQUIRED_FIELDS = ("session_id", "expected_current_entry_id", "action")

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    code: {"model": ErrorResponse} for code in (400, 403, 405, 409, 500)
}


def error_response(error: TurnError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.body())


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    locs = {str(err["loc"][0]) for err in errors if err.get("loc")}
    if not locs or any(err["type"] in {"missing", "string_too_short"} for err in errors):
        return f"Missing required fields ({' / '.join(_REQUIRED_FIELDS)})"
    if "action" in locs:
        return "action must be 'done' or 'skipped'"
    details = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in errors)
    return f"Invalid request body: {details}"


@router.get("/healthcheck")
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.post(
    "/sessions/advance",
    response_model=AdvanceResponse,
    responses=_ERROR_RESPONSES,
    dependencies=[Depends(require_host_pin)],
)
async def advance_route(
    request: Request,
    advancer: TurnAdvancer = Depends(get_advancer),
) -> AdvanceResponse | JSONResponse:
    # Body is parsed here rather than by FastAPI so malformed input maps to 400, not 422.
    try:
        payload = await request.json()
    except ValueError:
        return error_response(TurnError(kind=ErrorKind.validation, message="Request body is not valid JSON"))

    try:
        body = AdvanceRequest.model_validate(payload or {})
    except ValidationError as e:
        return error_response(TurnError(kind=ErrorKind.validation, message=_validation_message(e)))

    command = AdvanceCommand(
        session_id=body.session_id,
        expected_current_entry_id=body.expected_current_entry_id,
        action=body.action,
        top_label=body.top_label,
        top_tags=tuple(body.top_tags or ()),
    )

    try:
        outcome = advancer.advance(command)
    except Exception as e:
        logger.exception("advance failed unexpectedly session=%s", body.session_id)
        return error_response(TurnError(kind=ErrorKind.unexpected, message=f"500: {e}"))

    if isinstance(outcome, TurnError):
        return error_response(outcome)

    return AdvanceResponse(
        session_state=SessionStateView(
            session_id=outcome.state.session_id,
            current_entry_id=outcome.state.current_entry_id,
        ),
        next_entry=outcome.next_entry,
    )


@router.api_route(
    "/sessions/advance",
    methods=["GET", "PUT", "PATCH", "DELETE", "OPTIONS"],
    include_in_schema=False,
)
async def advance_wrong_method_route(request: Request) -> JSONResponse:
    return error_response(
        TurnError(kind=ErrorKind.method_not_allowed, message=f"Method {request.method} not allowed; use POST")
    )


@router.post(
    "/sessions/{session_id}/init",
    response_model=SessionView,
    status_code=status.HTTP_201_CREATED,
    responses=_ERROR_RESPONSES,
    dependencies=[Depends(require_host_pin)],
)
async def init_session_route(
    session_id: str,
    payload: InitSessionRequest,
    r: redis.Redis = Depends(get_redis),
    keys: RedisKeys = Depends(get_keys),
) -> SessionView | JSONResponse:
    """Randomize (when seeded) and open the queue; the first entry starts speaking."""

    rng = random.Random(payload.seed) if payload.seed is not None else None
    try:
        state = initialize_session(r=r, session_id=session_id, entry_ids=payload.entry_ids, keys=keys, rng=rng)
    except ValueError as e:
        return error_response(TurnError(kind=ErrorKind.state_conflict, message=str(e)))
    except redis.RedisError as e:
        return error_response(TurnError(kind=ErrorKind.dependency_failure, message=f"DB error(init): {e}"))

    logger.info("initialized session=%s entries=%d current=%s", session_id, len(payload.entry_ids), state.current_entry_id)
    return SessionView(state=state, entries=EntryQueue(r=r, keys=keys).list_entries(session_id))


@router.get("/sessions/{session_id}", response_model=SessionView)
async def get_session_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    keys: RedisKeys = Depends(get_keys),
) -> SessionView:
    """Current pointer plus every entry in turn order.

    Useful for recovering after a partially failed advance: the pointer here is
    the value to send as `expected_current_entry_id`.
    """

    state = SessionStateStore(r=r, keys=keys).get(session_id)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return SessionView(state=state, entries=EntryQueue(r=r, keys=keys).list_entries(session_id))


@router.get("/sessions/{session_id}/stats", response_model=SessionStatsResponse)
async def get_session_stats_route(
    session_id: str,
    r: redis.Redis = Depends(get_redis),
    keys: RedisKeys = Depends(get_keys),
) -> SessionStatsResponse:
    counters = StatisticsCounters(r=r, keys=keys)
    return SessionStatsResponse(
        session_id=session_id,
        topics=counters.topics(session_id),
        keywords=counters.keywords(session_id),
    )


@router.get("/sessions/{session_id}/actions", response_model=ActionLogResponse)
async def get_session_actions_route(
    session_id: str,
    count: int = 20,
    r: redis.Redis = Depends(get_redis),
    keys: RedisKeys = Depends(get_keys),
) -> ActionLogResponse:
    if count < 1 or count > 200:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="count must be between 1 and 200")
    return ActionLogResponse(session_id=session_id, actions=ActionAuditLog(r=r, keys=keys).recent(session_id, count))
