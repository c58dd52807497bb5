# routers/portfolio_routes.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status

from portfolio_tracker.models.position import PositionOut
from portfolio_tracker.models.transaction import TransactionOut
from portfolio_tracker.schemas.position import PositionCreate, PositionUpdate
from portfolio_tracker.schemas.summary import PortfolioSnapshot
from portfolio_tracker.schemas.transaction import TransactionCreate, TransactionUpdate
from portfolio_tracker.services.errors import (
    LedgerError,
    LedgerValidationError,
    NotFoundOrUnauthorized,
)
from portfolio_tracker.services.portfolio_state import PortfolioStateCoordinator

router = APIRouter()


def _to_http(exc: LedgerError) -> HTTPException:
    if isinstance(exc, LedgerValidationError):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, NotFoundOrUnauthorized):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=503, detail="Portfolio storage unavailable")


async def get_coordinator(
    request: Request,
    x_owner_id: int = Header(...),
) -> PortfolioStateCoordinator:
    # authentication lives outside this service; the caller vouches for the owner id
    try:
        return await request.app.state.registry.get(x_owner_id)
    except LedgerError as e:
        raise _to_http(e)


@router.get("", response_model=PortfolioSnapshot)
async def get_portfolio(
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    return coordinator.snapshot


@router.post("/positions", response_model=PositionOut, status_code=status.HTTP_201_CREATED)
async def create_position(
    payload: PositionCreate,
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    try:
        return await coordinator.add_position(payload)
    except LedgerError as e:
        raise _to_http(e)


@router.patch("/positions/{position_id}", response_model=PositionOut)
async def edit_position(
    position_id: int,
    payload: PositionUpdate,
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    try:
        return await coordinator.update_position(position_id, payload)
    except LedgerError as e:
        raise _to_http(e)


@router.delete("/positions/{position_id}")
async def remove_position(
    position_id: int,
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    try:
        await coordinator.delete_position(position_id)
    except LedgerError as e:
        raise _to_http(e)
    return {"detail": "Deleted"}


@router.post("/transactions", response_model=TransactionOut, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    payload: TransactionCreate,
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    try:
        return await coordinator.add_transaction(payload)
    except LedgerError as e:
        raise _to_http(e)


@router.put("/transactions/{transaction_id}", response_model=TransactionOut)
async def replace_transaction(
    transaction_id: int,
    payload: TransactionUpdate,
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    try:
        return await coordinator.update_transaction(transaction_id, payload)
    except LedgerError as e:
        raise _to_http(e)


@router.delete("/transactions/{transaction_id}")
async def remove_transaction(
    transaction_id: int,
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    try:
        await coordinator.delete_transaction(transaction_id)
    except LedgerError as e:
        raise _to_http(e)
    return {"detail": "Deleted"}


@router.post("/prices/start")
async def start_prices(
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    started = await coordinator.start_price_updates()
    return {"running": started}


@router.post("/prices/stop")
async def stop_prices(
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    await coordinator.stop_price_updates()
    return {"running": False}


@router.get("/performers")
async def performers(
    limit: int = Query(5, ge=1, le=50),
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    return {
        "top": coordinator.get_top_performers(limit),
        "worst": coordinator.get_worst_performers(limit),
        "realized_gains": round(coordinator.realized_gains(), 8),
    }


@router.get("/search", response_model=list[PositionOut])
async def search_positions(
    q: str = Query("", max_length=120),
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    try:
        return await coordinator.search_positions(q)
    except LedgerError as e:
        raise _to_http(e)


@router.get("/volume")
async def trade_volume(
    coordinator: PortfolioStateCoordinator = Depends(get_coordinator),
):
    try:
        bought = await coordinator.total_buy_volume()
        sold = await coordinator.total_sell_volume()
    except LedgerError as e:
        raise _to_http(e)
    return {"buy": round(bought, 8), "sell": round(sold, 8)}


@router.post("/logout")
async def logout(
    request: Request,
    x_owner_id: int = Header(...),
):
    # drops the owner's in-process state and stops its price feed
    await request.app.state.registry.close(x_owner_id)
    return {"detail": "Logged out"}
