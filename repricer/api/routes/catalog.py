from fastapi import APIRouter, Depends, Query, Request
from typing import Any, Dict, List, Optional
import logging

from repricer.api.dto.repricing_dto import (
    AssignRuleRequest,
    AssignStrategyRequest,
    CompetitorRequest,
    MonitoringRequest,
)
from repricer.core.catalog.catalog_service import CatalogService
from repricer.infra.adapter.entity.competitor_entity import CompetitorRule, CompetitorSnapshot
from repricer.infra.adapter.entity.listing_entity import Listing
from repricer.infra.adapter.entity.strategy_entity import PricingStrategy

router = APIRouter()
logger = logging.getLogger(__name__)


def get_catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


@router.post("/strategies", response_model=PricingStrategy, status_code=201)
async def create_strategy(data: Dict[str, Any], catalog: CatalogService = Depends(get_catalog)):
    return await catalog.create_strategy(data)


@router.get("/strategies", response_model=List[PricingStrategy])
async def list_strategies(
        owner_id: Optional[str] = Query(None),
        is_active: Optional[bool] = Query(None),
        catalog: CatalogService = Depends(get_catalog)
):
    return await catalog.list_strategies(owner_id, is_active)


@router.get("/strategies/{strategy_id}", response_model=PricingStrategy)
async def get_strategy(strategy_id: str, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.get_strategy(strategy_id)


@router.put("/strategies/{strategy_id}", response_model=PricingStrategy)
async def update_strategy(strategy_id: str, changes: Dict[str, Any], catalog: CatalogService = Depends(get_catalog)):
    return await catalog.update_strategy(strategy_id, changes)


@router.delete("/strategies/{strategy_id}")
async def delete_strategy(strategy_id: str, catalog: CatalogService = Depends(get_catalog)):
    return {"deleted": await catalog.delete_strategy(strategy_id)}


@router.post("/competitor-rules", response_model=CompetitorRule, status_code=201)
async def create_rule(data: Dict[str, Any], catalog: CatalogService = Depends(get_catalog)):
    return await catalog.create_rule(data)


@router.get("/competitor-rules", response_model=List[CompetitorRule])
async def list_rules(
        owner_id: Optional[str] = Query(None),
        is_active: Optional[bool] = Query(None),
        catalog: CatalogService = Depends(get_catalog)
):
    return await catalog.list_rules(owner_id, is_active)


@router.get("/competitor-rules/{rule_id}", response_model=CompetitorRule)
async def get_rule(rule_id: str, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.get_rule(rule_id)


@router.put("/listings/{item_id}/strategy", response_model=Listing)
async def assign_strategy(item_id: str, body: AssignStrategyRequest, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.assign_strategy(
        item_id,
        body.strategy_id,
        min_price=body.min_price,
        max_price=body.max_price,
        sku=body.sku,
        user_id=body.user_id,
    )


@router.put("/listings/{item_id}/competitor-rule", response_model=Listing)
async def assign_rule(item_id: str, body: AssignRuleRequest, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.assign_rule(item_id, body.rule_id, sku=body.sku, user_id=body.user_id)


@router.put("/listings/{item_id}/monitoring", response_model=Listing)
async def set_monitoring(item_id: str, body: MonitoringRequest, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.set_monitoring(item_id, body.enabled, sku=body.sku, user_id=body.user_id)


@router.get("/listings/{item_id}/competitors", response_model=List[CompetitorSnapshot])
async def list_competitors(item_id: str, user_id: str = Query(...), catalog: CatalogService = Depends(get_catalog)):
    return await catalog.list_competitors(user_id, item_id)


@router.post("/listings/{item_id}/competitors", response_model=List[CompetitorSnapshot])
async def add_competitor(item_id: str, body: CompetitorRequest, catalog: CatalogService = Depends(get_catalog)):
    return await catalog.add_competitor(body.user_id, item_id, body.competitor)


@router.delete("/listings/{item_id}/competitors/{competitor_item_id}", response_model=List[CompetitorSnapshot])
async def remove_competitor(
        item_id: str,
        competitor_item_id: str,
        user_id: str = Query(...),
        catalog: CatalogService = Depends(get_catalog)
):
    return await catalog.remove_competitor(user_id, item_id, competitor_item_id)
