"""
Asset, Debt and Net Worth Endpoints

Thin CRUD routes over ItemService. Each mutating route carries the rate
limit guard of its action on top of the router-wide global limit:

- POST   /assets        add-asset       POST   /debts        add-debt
- PUT    /assets/{id}   update-asset    PUT    /debts/{id}   update-debt
- DELETE /assets/{id}   delete-item     DELETE /debts/{id}   delete-item
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from app.api.deps import get_item_service
from app.api.schemas import AssetCreate, AssetUpdate, DebtCreate, DebtUpdate
from app.core.validators import sanitize_document_id
from app.middleware.rate_limit import (
    asset_add_rate_limit,
    asset_update_rate_limit,
    debt_add_rate_limit,
    debt_update_rate_limit,
    delete_rate_limit,
)
from app.services.item_service import ASSETS, DEBTS, ItemService

assets_router = APIRouter(prefix="/assets", tags=["Assets"])
debts_router = APIRouter(prefix="/debts", tags=["Debts"])
networth_router = APIRouter(prefix="/networth", tags=["Net Worth"])


def _checked_id(item_id: str) -> str:
    sanitized = sanitize_document_id(item_id)
    if not sanitized:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid id format: '{item_id}'"
        )
    return sanitized


# Assets

@assets_router.get("")
async def list_assets(request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    return {"success": True, "data": await items.list_items(ASSETS, request.state.user_id)}


@assets_router.get("/{item_id}")
async def get_asset(item_id: str, request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    asset = await items.get_item(ASSETS, request.state.user_id, _checked_id(item_id))
    return {"success": True, "data": asset}


@assets_router.get("/{item_id}/history")
async def get_asset_history(item_id: str, request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    history = await items.get_value_history(ASSETS, request.state.user_id, _checked_id(item_id))
    return {"success": True, "data": history}


@assets_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(asset_add_rate_limit)],
)
async def create_asset(body: AssetCreate, request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    asset = await items.add_item(
        ASSETS, request.state.user_id, body.model_dump(by_alias=True, exclude_none=True)
    )
    return {"success": True, "data": asset}


@assets_router.put("/{item_id}", dependencies=[Depends(asset_update_rate_limit)])
async def update_asset(
    item_id: str,
    body: AssetUpdate,
    request: Request,
    items: ItemService = Depends(get_item_service),
) -> dict:
    asset = await items.update_item(
        ASSETS,
        request.state.user_id,
        _checked_id(item_id),
        body.model_dump(by_alias=True, exclude_unset=True),
    )
    return {"success": True, "data": asset}


@assets_router.delete("/{item_id}", dependencies=[Depends(delete_rate_limit)])
async def delete_asset(item_id: str, request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    await items.delete_item(ASSETS, request.state.user_id, _checked_id(item_id))
    return {"success": True}


# Debts

@debts_router.get("")
async def list_debts(request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    return {"success": True, "data": await items.list_items(DEBTS, request.state.user_id)}


@debts_router.get("/{item_id}")
async def get_debt(item_id: str, request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    debt = await items.get_item(DEBTS, request.state.user_id, _checked_id(item_id))
    return {"success": True, "data": debt}


@debts_router.get("/{item_id}/history")
async def get_debt_history(item_id: str, request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    history = await items.get_value_history(DEBTS, request.state.user_id, _checked_id(item_id))
    return {"success": True, "data": history}


@debts_router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(debt_add_rate_limit)],
)
async def create_debt(body: DebtCreate, request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    debt = await items.add_item(
        DEBTS, request.state.user_id, body.model_dump(by_alias=True, exclude_none=True)
    )
    return {"success": True, "data": debt}


@debts_router.put("/{item_id}", dependencies=[Depends(debt_update_rate_limit)])
async def update_debt(
    item_id: str,
    body: DebtUpdate,
    request: Request,
    items: ItemService = Depends(get_item_service),
) -> dict:
    debt = await items.update_item(
        DEBTS,
        request.state.user_id,
        _checked_id(item_id),
        body.model_dump(by_alias=True, exclude_unset=True),
    )
    return {"success": True, "data": debt}


@debts_router.delete("/{item_id}", dependencies=[Depends(delete_rate_limit)])
async def delete_debt(item_id: str, request: Request, items: ItemService = Depends(get_item_service)) -> dict:
    await items.delete_item(DEBTS, request.state.user_id, _checked_id(item_id))
    return {"success": True}


# Net worth

@networth_router.get("/history")
async def get_networth_history(
    request: Request,
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    items: ItemService = Depends(get_item_service),
) -> dict:
    history = await items.get_networth_history(request.state.user_id, limit=limit)
    return {"success": True, "data": history}
