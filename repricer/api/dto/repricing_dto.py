from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
from typing import Any, Dict, List, Optional
from datetime import datetime

from repricer.core.repricing.state import RepricingState


class SchedulerStatus(str, Enum):
    RUNNING = "running"
    STOPPED = "stopped"


class ExecutionResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    item_id: str
    sku: Optional[str] = None
    success: bool
    message: str
    state: RepricingState
    price_changes: bool = False
    old_price: Optional[float] = None
    new_price: Optional[float] = None
    competitor_lowest_price: Optional[float] = None
    competitors_found: int = 0
    competitors_admissible: int = 0
    history_id: Optional[str] = None


class CycleSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    message: str = ""
    total: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    busy: int = 0
    results: List[ExecutionResultResponse] = []


class SchedulerStatusResponse(BaseModel):
    status: SchedulerStatus
    message: str
    cycle_running: bool = False
    interval_minutes: int
    batch_size: int
    next_run: Optional[datetime] = None
    last_cycle: Optional[CycleSummaryResponse] = None


class ExecuteItemRequest(BaseModel):
    user_id: Optional[str] = None
    sku: Optional[str] = None


class MaintenanceResponse(BaseModel):
    success: bool = True
    archived_count: int = 0
    deleted_count: int = 0


class AssignStrategyRequest(BaseModel):
    strategy_id: str
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    sku: Optional[str] = None
    user_id: Optional[str] = None


class AssignRuleRequest(BaseModel):
    rule_id: Optional[str] = None
    sku: Optional[str] = None
    user_id: Optional[str] = None


class MonitoringRequest(BaseModel):
    enabled: bool
    sku: Optional[str] = None
    user_id: Optional[str] = None


class CompetitorRequest(BaseModel):
    user_id: str
    competitor: Dict[str, Any]
