"""Automation rule endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from moneyflows.api.deps import get_engine, http_error
from moneyflows.schema.automation import (
    AutomationStats,
    Execution,
    FinancialEvent,
    Rule,
    RuleCategory,
    RuleCreate,
    RuleStatus,
    RuleUpdate,
)
from moneyflows.services import automation_service
from moneyflows.services.errors import ValidationError
from moneyflows.services.money_flow_service import MoneyFlowEngine

router = APIRouter()


@router.get("", response_model=list[Rule])
async def list_automation_rules(
    category: RuleCategory | None = None,
    is_active: bool | None = Query(default=None, alias="isActive"),
    rule_status: RuleStatus | None = Query(default=None, alias="status"),
    engine: MoneyFlowEngine = Depends(get_engine),
) -> list[Rule]:
    """List automation rules sorted by priority."""
    return await engine.get_rules(category=category, is_active=is_active, status=rule_status)


@router.post("", response_model=Rule, status_code=status.HTTP_201_CREATED)
async def create_automation_rule(
    payload: RuleCreate,
    engine: MoneyFlowEngine = Depends(get_engine),
) -> Rule:
    """Create a new automation rule."""
    try:
        return await engine.create_rule(payload)
    except ValidationError as exc:
        raise http_error(exc) from exc


@router.get("/stats", response_model=AutomationStats)
async def read_automation_stats(engine: MoneyFlowEngine = Depends(get_engine)) -> AutomationStats:
    """Fleet-wide execution statistics."""
    return await engine.get_stats()


@router.get("/templates")
async def list_automation_templates(engine: MoneyFlowEngine = Depends(get_engine)) -> list[dict[str, Any]]:
    """Predefined rule templates."""
    return engine.get_templates()


@router.get("/executions", response_model=list[Execution])
async def list_executions(
    rule_id: str | None = Query(default=None, alias="ruleId"),
    limit: int | None = Query(default=None, ge=1, le=500),
    engine: MoneyFlowEngine = Depends(get_engine),
) -> list[Execution]:
    """Execution history, newest first."""
    return await engine.get_execution_history(rule_id=rule_id, limit=limit)


@router.get("/executions/{execution_id}", response_model=Execution)
async def read_execution(execution_id: str, engine: MoneyFlowEngine = Depends(get_engine)) -> Execution:
    execution = await engine.get_execution(execution_id)
    if not execution:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Execution not found")
    return execution


@router.post("/events")
async def ingest_financial_event(
    event: FinancialEvent,
    engine: MoneyFlowEngine = Depends(get_engine),
) -> dict[str, Any]:
    """Evaluate event-driven rules against an inbound transaction."""
    return await automation_service.submit_event(engine, event)


@router.post("/tick")
async def run_clock_tick(engine: MoneyFlowEngine = Depends(get_engine)) -> dict[str, Any]:
    """Process due scheduled rules immediately."""
    return await automation_service.run_tick(engine)


@router.get("/{rule_id}", response_model=Rule)
async def read_automation_rule(rule_id: str, engine: MoneyFlowEngine = Depends(get_engine)) -> Rule:
    rule = await engine.get_rule(rule_id)
    if not rule:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")
    return rule


@router.patch("/{rule_id}", response_model=Rule)
async def update_automation_rule(
    rule_id: str,
    payload: RuleUpdate,
    engine: MoneyFlowEngine = Depends(get_engine),
) -> Rule:
    """Update an automation rule."""
    try:
        return await engine.update_rule(rule_id, payload)
    except ValidationError as exc:
        raise http_error(exc) from exc


@router.delete(
    "/{rule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    response_model=None,
)
async def delete_automation_rule(rule_id: str, engine: MoneyFlowEngine = Depends(get_engine)) -> None:
    """Delete an automation rule."""
    if not await engine.delete_rule(rule_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation rule not found")


@router.post("/{rule_id}/pause", response_model=Rule)
async def pause_automation_rule(rule_id: str, engine: MoneyFlowEngine = Depends(get_engine)) -> Rule:
    try:
        return await engine.pause_rule(rule_id)
    except ValidationError as exc:
        raise http_error(exc) from exc


@router.post("/{rule_id}/resume", response_model=Rule)
async def resume_automation_rule(rule_id: str, engine: MoneyFlowEngine = Depends(get_engine)) -> Rule:
    try:
        return await engine.resume_rule(rule_id)
    except ValidationError as exc:
        raise http_error(exc) from exc


@router.post("/{rule_id}/cancel", response_model=Rule)
async def cancel_automation_rule(rule_id: str, engine: MoneyFlowEngine = Depends(get_engine)) -> Rule:
    try:
        return await engine.cancel_rule(rule_id)
    except ValidationError as exc:
        raise http_error(exc) from exc
