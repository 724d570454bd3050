from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


PartType = Literal[
    "cpu",
    "gpu",
    "ram",
    "motherboard",
    "storage",
    "psu",
    "case",
    "cooling",
]

SpecValue = Union[int, float, str]

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ApiModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Part(ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: PartType
    name: str
    brand: str
    price: float = Field(default=0.0, ge=0)
    specs: Dict[str, Optional[SpecValue]] = Field(default_factory=dict)
    compatibility: List[str] = Field(default_factory=list)
    description: str = ""
    in_stock: bool = True


class PartCreate(ApiModel):
    # the wire JSON cannot carry NaN or Infinity back out
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, allow_inf_nan=False)

    id: Optional[str] = None
    type: PartType
    name: str = Field(min_length=1)
    brand: str = Field(min_length=1)
    price: float = Field(ge=0)
    specs: Dict[str, SpecValue] = Field(default_factory=dict)
    compatibility: List[str] = Field(default_factory=list)
    description: str = ""
    in_stock: bool = True


# === Compatibility ===


class CheckedPart(ApiModel):
    id: str
    name: str
    type: PartType


class CompatibilityVerdict(ApiModel):
    compatible: bool = True
    issues: List[str] = Field(default_factory=list)
    checked_parts: List[CheckedPart] = Field(default_factory=list)


class PowerEstimate(ApiModel):
    estimated_power: int
    psu_wattage: Optional[float] = None
    has_headroom: Optional[bool] = None


# === Requests ===


class PartIdsRequest(ApiModel):
    part_ids: List[str]


class BatchRequest(ApiModel):
    ids: List[str]


class CartAddRequest(ApiModel):
    part_id: str = Field(min_length=1)
    quantity: int = Field(default=1, ge=1)


class CartUpdateRequest(ApiModel):
    part_id: str = Field(min_length=1)
    quantity: int = Field(ge=0)


class CheckoutRequest(ApiModel):
    customer_name: str = Field(min_length=1)
    customer_email: str = Field(pattern=EMAIL_PATTERN)


# === Catalog ===


class PartFilters(ApiModel):
    type: Optional[str] = None
    brand: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    query: Optional[str] = None
    in_stock: Optional[bool] = None
    sort_by: str = "name"
    sort_order: Literal["asc", "desc"] = "asc"
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class PartsPage(ApiModel):
    parts: List[Part]
    total: int
    page: int
    total_pages: int


class ComparedPart(ApiModel):
    id: str
    name: str
    type: PartType
    brand: str
    price: float


class PartComparison(ApiModel):
    parts: List[ComparedPart]
    spec_keys: List[str]
    rows: Dict[str, List[Optional[SpecValue]]]
    cheapest: str
    same_type: bool


# === Cart & orders ===


class CartLine(ApiModel):
    part_id: str
    quantity: int
    part: Part


class CartView(ApiModel):
    id: Optional[str] = None
    items: List[CartLine] = Field(default_factory=list)
    total: float = 0.0
    currency: str = "USD"
    region: str = "US"
    item_count: int = 0


class OrderItem(ApiModel):
    part_id: str
    part_name: str
    part_type: PartType
    part_brand: str
    price: float
    quantity: int


class Order(ApiModel):
    order_number: str
    session_id: str
    customer_name: str
    customer_email: str
    items: List[OrderItem]
    subtotal: float
    tax: float
    total: float
    currency: str = "USD"
    status: Literal["pending", "completed", "failed", "refunded"] = "completed"
    billing_email_sent: bool = False
    billing_email_sent_at: Optional[datetime] = None
    billing_email_error: Optional[str] = None
    created_at: datetime


class CheckoutResult(ApiModel):
    success: bool = True
    order_number: str
    total: float
    subtotal: float
    tax: float
    currency: str
    item_count: int
    email_sent: bool
    email_error: Optional[str] = None
    message: str


class PCRequestItem(ApiModel):
    part_id: str
    quantity: int
    part_name: str
    part_type: str
    part_brand: str
    price: float


class PCRequest(ApiModel):
    customer_name: str = Field(min_length=1)
    customer_email: str = Field(pattern=EMAIL_PATTERN)
    customer_phone: Optional[str] = None
    customer_city: Optional[str] = None
    customer_budget: Optional[float] = None
    customer_notes: Optional[str] = None
    items: List[PCRequestItem]
    subtotal: float
    tax: float
    total: float
    currency: str = "USD"


class PCRequestResult(ApiModel):
    success: bool = True
    message: str
    email_sent: bool
    email_error: Optional[str] = None


# === Saved builds ===

URL_PATTERN = r"^https?://\S+$"


class BuildPart(ApiModel):
    part: str = Field(min_length=1)
    type: str
    name: str
    price: float = Field(ge=0)


class SavedBuildCreate(ApiModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    category: str = Field(min_length=1)
    total_price: float = Field(ge=0)
    parts_config: List[BuildPart]
    pc_part_picker_url: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    is_public: bool = False


class SavedBuildUpdate(ApiModel):
    """Partial update; only the fields present in the request change."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, min_length=1)
    total_price: Optional[float] = Field(default=None, ge=0)
    parts_config: Optional[List[BuildPart]] = None
    pc_part_picker_url: Optional[str] = Field(default=None, pattern=URL_PATTERN)
    is_public: Optional[bool] = None


class SavedBuild(ApiModel):
    id: str
    # owner; never sent over the wire
    session_id: str = Field(exclude=True)
    name: str
    description: Optional[str] = None
    category: str
    total_price: float
    parts_config: List[BuildPart]
    pc_part_picker_url: Optional[str] = None
    is_public: bool = False
    compatibility: CompatibilityVerdict
    created_at: datetime
    updated_at: datetime


# === Guides ===


class GuideCreate(ApiModel):
    category: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str = Field(min_length=1)
    content: str = Field(min_length=1)
    read_time: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class GuideUpdate(ApiModel):
    category: Optional[str] = Field(default=None, min_length=1)
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, min_length=1)
    content: Optional[str] = Field(default=None, min_length=1)
    read_time: Optional[str] = None
    tags: Optional[List[str]] = None


class Guide(ApiModel):
    id: str
    category: str
    title: str
    description: str
    content: str
    read_time: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    published_at: datetime
    updated_at: datetime
