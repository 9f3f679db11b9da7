"""Table API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException

from api.host import TableSession, get_table, new_table
from api.schemas import (
    ActionRequest,
    ActionResponse,
    CountResponse,
    CutPolicyRequest,
    CutPolicyResponse,
    FundsRequestBody,
    LedgerResponse,
    NewTableResponse,
    TableStateResponse,
)
from api.session import create_session, extract_session_id
from bjcore.engine import ActionResult
from bjcore.errors import TableError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _table_for(session_id: str) -> TableSession:
    """Resolve a signed session header to its table."""
    if extract_session_id(session_id) is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session")
    return await get_table(session_id)


async def _respond(table: TableSession, result: ActionResult | None) -> ActionResponse:
    await table.save()
    funds = table.adapter.pending_funds
    return ActionResponse.build(
        result=result,
        snapshot=table.engine.snapshot(),
        results=table.adapter.take_results(),
        funds=funds,
        awaiting_insurance=table.awaiting_insurance,
    )


@router.post("/new")
async def new_table_session(
    session_id: Annotated[str | None, Header(alias="X-Session-ID")] = None,
) -> NewTableResponse:
    """Open a new table, replacing any table on this session."""
    if session_id is None or extract_session_id(session_id) is None:
        session_id = await create_session()

    table = await new_table(session_id)
    return NewTableResponse(
        session_id=session_id,
        state=TableStateResponse.from_snapshot(table.engine.snapshot()),
    )


@router.get("/state")
async def get_state(
    session_id: Annotated[str, Header(alias="X-Session-ID")],
) -> TableStateResponse:
    """Get current table state."""
    table = await _table_for(session_id)
    return TableStateResponse.from_snapshot(table.engine.snapshot())


@router.post("/action")
async def table_action(
    request: ActionRequest,
    session_id: Annotated[str, Header(alias="X-Session-ID")],
) -> ActionResponse:
    """Execute a table action."""
    table = await _table_for(session_id)
    payload = request.amount
    try:
        result = await table.run(request.action, payload)
    except TableError as exc:
        logger.error("Action %s failed: %s", request.action, exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return await _respond(table, result)


@router.post("/funds")
async def add_funds(
    request: FundsRequestBody,
    session_id: Annotated[str, Header(alias="X-Session-ID")],
) -> ActionResponse:
    """Add chips, retrying the blocked action if there was one."""
    table = await _table_for(session_id)
    if table.engine.snapshot().game_over:
        raise HTTPException(status_code=400, detail="Game is over")
    result = await table.add_funds(request.amount, retry=request.retry)
    return await _respond(table, result)


@router.post("/funds/decline")
async def decline_funds(
    session_id: Annotated[str, Header(alias="X-Session-ID")],
) -> ActionResponse:
    """Continue without adding chips."""
    table = await _table_for(session_id)
    if table.decline_funds() is None:
        raise HTTPException(status_code=400, detail="No funds request pending")
    return await _respond(table, None)


@router.put("/cut-policy")
async def set_cut_policy(
    request: CutPolicyRequest,
    session_id: Annotated[str, Header(alias="X-Session-ID")],
) -> CutPolicyResponse:
    """Change cut marker placement."""
    table = await _table_for(session_id)
    policy = table.set_cut_policy(request.random_placement, request.penetration_percent)
    return CutPolicyResponse.model_validate(policy)


@router.get("/ledger")
async def get_ledger(
    session_id: Annotated[str, Header(alias="X-Session-ID")],
) -> LedgerResponse:
    """Bankroll after each settled hand (rolling window)."""
    table = await _table_for(session_id)
    return LedgerResponse.from_ledger(table.ledger)


@router.delete("/ledger")
async def clear_ledger(
    session_id: Annotated[str, Header(alias="X-Session-ID")],
) -> LedgerResponse:
    """Forget ledger history; the current bankroll is kept."""
    table = await _table_for(session_id)
    table.clear_ledger()
    await table.save()
    return LedgerResponse.from_ledger(table.ledger)


@router.get("/count")
async def get_count(
    session_id: Annotated[str, Header(alias="X-Session-ID")],
) -> CountResponse:
    """KO running count of cards revealed from the current shoe."""
    table = await _table_for(session_id)
    return CountResponse.from_counter(table.counter, table.engine.shoe.shoe_id)
