from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from repricer.infra.adapter.entity.base_entity import MongoEntity, utc_now


class HistoryStatus(str, Enum):
    DONE = "Done"
    SKIPPED = "Skipped"
    ERROR = "Error"
    MANUAL = "Manual"


class HistorySource(str, Enum):
    API = "api"
    MANUAL = "manual"
    SYSTEM = "system"


class ChangeDirection(str, Enum):
    INCREASED = "increased"
    DECREASED = "decreased"
    UNCHANGED = "unchanged"


class ApiErrorDetail(BaseModel):
    kind: Literal["api_error"] = "api_error"
    operation: str
    message: str
    status_code: Optional[int] = None
    response: Optional[Dict[str, Any]] = None


class ValidationErrorDetail(BaseModel):
    kind: Literal["validation_error"] = "validation_error"
    message: str
    field: Optional[str] = None


class TimeoutDetail(BaseModel):
    kind: Literal["timeout"] = "timeout"
    operation: str
    timeout_seconds: float
    message: str = "Marketplace call timed out"


class UnclassifiedErrorDetail(BaseModel):
    kind: Literal["unclassified"] = "unclassified"
    payload: str


ErrorDetail = Annotated[
    Union[ApiErrorDetail, ValidationErrorDetail, TimeoutDetail, UnclassifiedErrorDetail],
    Field(discriminator="kind"),
]


class PriceHistoryCreate(BaseModel):
    """Write model: what a caller supplies to the recorder."""

    model_config = ConfigDict(use_enum_values=True)

    item_id: str = Field(..., min_length=1)
    new_price: float = Field(..., ge=0)
    status: HistoryStatus
    success: bool
    sku: Optional[str] = None
    user_id: Optional[str] = None
    title: Optional[str] = Field(default=None, max_length=500)
    old_price: Optional[float] = Field(default=None, ge=0)
    currency: str = "USD"
    change_amount: Optional[float] = None
    change_percentage: Optional[float] = None
    change_direction: Optional[ChangeDirection] = None
    competitor_lowest_price: Optional[float] = Field(default=None, ge=0)
    strategy_name: Optional[str] = None
    repricing_rule: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    source: HistorySource = HistorySource.API
    reason: Optional[str] = Field(default=None, max_length=500)
    api_response: Optional[Dict[str, Any]] = None
    error: Optional[ErrorDetail] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PriceHistoryRecord(MongoEntity, PriceHistoryCreate):
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def formatted_change(self) -> str:
        if self.change_amount is None:
            return "N/A"
        sign = "+" if self.change_amount >= 0 else ""
        return f"{sign}{self.currency} {self.change_amount:.2f}"
