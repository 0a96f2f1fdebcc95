"""
Log-control router - inspect and change log levels at runtime.

Endpoints:
    GET    /logging/config           Effective levels, pending expiries, resource summary
    GET    /logging/level/{name}     Effective level of one logger
    PUT    /logging/level/{name}     Override (optionally temporary)
    DELETE /logging/level/{name}     Revert an override
    POST   /logging/preset/{preset}  Apply MINIMAL / STANDARD / VERBOSE / DEBUG
    POST   /logging/debug            Namespace-wide TRACE for a while
    DELETE /logging/debug            End debug mode early
    GET    /logging/presets          Available presets

Every mutation is recorded as an AUDIT event attributed to the request's user.
Invalid level or preset names are answered with 400 problem responses.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import timedelta

from fastapi import APIRouter, Query, Request

from pgscope.api.schemas import (
    LevelChangeRequest,
    LevelChangeResponse,
    LevelResponse,
    LogConfigResponse,
    PresetInfo,
    ResourceSummaryResponse,
)
from pgscope.core.errors import InvalidLevelError, InvalidPresetError
from pgscope.framework.logging.config import Observability
from pgscope.framework.logging.context import ANONYMOUS, current_context
from pgscope.framework.logging.levels import (
    PRESET_DESCRIPTIONS,
    LogPreset,
    Overridden,
    Temporary,
    parse_level,
    parse_preset,
)

router = APIRouter(prefix="/logging")


def _obs(request: Request) -> Observability:
    return request.app.state.observability


def _actor() -> str:
    ctx = current_context()
    return (ctx.user if ctx else None) or ANONYMOUS


def _level_response(obs: Observability, name: str) -> LevelResponse:
    state = obs.levels.state_of(name)
    return LevelResponse(
        logger=name,
        level=obs.levels.get_level(name).name,
        overridden=isinstance(state, (Overridden, Temporary)),
        expires_at=state.expires_at if isinstance(state, Temporary) else None,
    )


@router.get("/config", response_model=LogConfigResponse)
def get_config(request: Request):
    """Effective levels of well-known and overridden loggers, plus a resource summary."""
    obs = _obs(request)
    return LogConfigResponse(
        levels=obs.levels.get_log_configuration(),
        temporary_overrides=obs.levels.get_temporary_expiry(),
        format=obs.settings.format,
        sql_logging_enabled=obs.dispatcher.sql_enabled,
        redaction_enabled=obs.redaction.enabled,
        resources=ResourceSummaryResponse(**asdict(obs.sampler.summary())),
    )


@router.get("/level/{name}", response_model=LevelResponse)
def get_level(request: Request, name: str):
    return _level_response(_obs(request), name)


@router.put("/level/{name}", response_model=LevelChangeResponse)
def set_level(request: Request, name: str, body: LevelChangeRequest):
    """Override a logger's level.

    With ``duration_minutes`` the override reverts on its own; without it,
    it stays until ``DELETE /logging/level/{name}``.

    Example:
        PUT /api/v1/logging/level/pgscope.SQL
        {"level": "DEBUG", "duration_minutes": 10}
    """
    obs = _obs(request)
    # Validate up front so the client gets the precise reason
    level = parse_level(body.level)

    if body.duration_minutes is not None:
        ok = obs.levels.set_temporary_level(name, level, timedelta(minutes=body.duration_minutes))
    else:
        ok = obs.levels.set_level(name, level)
    if not ok:
        raise InvalidLevelError(body.level)

    outcome = f"level={level.name}"
    if body.duration_minutes is not None:
        outcome += f" for {body.duration_minutes:g} minutes"
    obs.dispatcher.log_audit("SET_LOG_LEVEL", name, _actor(), outcome)

    current = _level_response(obs, name)
    return LevelChangeResponse(
        logger=name,
        level=current.level,
        expires_at=current.expires_at,
        message=f"Log level for {name} set to {level.name}",
    )


@router.delete("/level/{name}", response_model=LevelChangeResponse)
def revert_level(request: Request, name: str):
    obs = _obs(request)
    obs.levels.revert(name)
    obs.dispatcher.log_audit("REVERT_LOG_LEVEL", name, _actor(), "reverted")
    return LevelChangeResponse(
        logger=name,
        level=obs.levels.get_level(name).name,
        message=f"Log level for {name} reverted",
    )


@router.post("/preset/{preset}", response_model=LevelChangeResponse)
def apply_preset(
    request: Request,
    preset: str,
    logger: str | None = Query(None, description="Target logger (root when omitted)"),
):
    obs = _obs(request)
    resolved = parse_preset(preset)
    if not obs.levels.apply_preset(resolved, logger):
        raise InvalidPresetError(preset, [p.value for p in LogPreset])

    target = logger or "ROOT"
    obs.dispatcher.log_audit("APPLY_LOG_PRESET", target, _actor(), f"preset={resolved.value}")
    return LevelChangeResponse(
        logger=target,
        level=resolved.level.name,
        message=f"Preset {resolved.value} applied to {target}",
    )


@router.post("/debug", response_model=LevelChangeResponse)
def enable_debug(
    request: Request,
    duration: float = Query(15, gt=0, description="Minutes until debug mode turns itself off"),
):
    obs = _obs(request)
    namespace = obs.levels.namespace
    obs.levels.enable_debug_mode(timedelta(minutes=duration))
    obs.dispatcher.log_audit("ENABLE_DEBUG_MODE", namespace, _actor(), f"duration={duration:g} minutes")
    current = _level_response(obs, namespace)
    return LevelChangeResponse(
        logger=namespace,
        level=current.level,
        expires_at=current.expires_at,
        message=f"Debug mode enabled for {duration:g} minutes",
    )


@router.delete("/debug", response_model=LevelChangeResponse)
def disable_debug(request: Request):
    obs = _obs(request)
    namespace = obs.levels.namespace
    obs.levels.disable_debug_mode()
    obs.dispatcher.log_audit("DISABLE_DEBUG_MODE", namespace, _actor(), "disabled")
    return LevelChangeResponse(
        logger=namespace,
        level=obs.levels.get_level(namespace).name,
        message="Debug mode disabled",
    )


@router.get("/presets", response_model=list[PresetInfo])
def list_presets():
    return [
        PresetInfo(name=p.value, level=p.level.name, description=PRESET_DESCRIPTIONS[p.value])
        for p in LogPreset
    ]
