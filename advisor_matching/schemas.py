"""
Pydantic schemas for engine inputs.

Schema groups:
  - Profiles (ProviderData, ClientData): the read-only views the factor
    scorer and forecaster work on, built from the Django profile models.
  - Inbound events (OutcomeReport, InteractionEvent, MilestoneEvent):
    validated before anything reaches the outcome store.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError

SchemaT = TypeVar('SchemaT', bound=BaseModel)


def _clean_list(value):
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(',') if part.strip()]
    return [str(item) for item in value if item]


# ────────────────────────────────────────────────────────────────
# Profiles
# ────────────────────────────────────────────────────────────────

class ProviderData(BaseModel):
    """An accountant as seen by the scoring and forecasting code."""
    provider_id: str = Field(min_length=1)
    name: str = ""
    province: str = ""
    city: str = ""
    specializations: List[str] = Field(default_factory=list)
    industries_served: List[str] = Field(default_factory=list)
    bio: str = ""
    years_experience: Optional[int] = Field(default=None, ge=0)
    hourly_rate: Optional[float] = Field(default=None, ge=0)
    accepting_clients: bool = True
    current_capacity: Optional[int] = Field(default=None, ge=0)
    total_matches: int = Field(default=0, ge=0)
    average_rating: Optional[float] = Field(default=None, ge=0, le=5)
    communication_style: str = ""
    preferred_channel: str = ""
    joined_at: Optional[datetime] = None

    @field_validator('specializations', 'industries_served', mode='before')
    @classmethod
    def clean_lists(cls, v):
        return _clean_list(v)

    @field_validator('province', mode='before')
    @classmethod
    def normalize_province(cls, v):
        return (v or '').strip().upper()

    @field_validator('name', 'city', 'bio', 'communication_style', 'preferred_channel', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return v or ''

    @classmethod
    def from_model(cls, obj) -> 'ProviderData':
        return cls.model_validate(obj, from_attributes=True)


class ClientData(BaseModel):
    """A business client as seen by the scoring and forecasting code."""
    client_id: str = ""
    business_name: str = ""
    industry: str = ""
    province: str = ""
    city: str = ""
    employee_count: Optional[int] = Field(default=None, ge=0)
    annual_revenue: Optional[float] = Field(default=None, ge=0)
    complexity_level: str = ""
    services_needed: List[str] = Field(default_factory=list)
    budget: Optional[float] = Field(default=None, ge=0)
    communication_style: str = ""
    preferred_channel: str = ""

    @field_validator('services_needed', mode='before')
    @classmethod
    def clean_services(cls, v):
        return _clean_list(v)

    @field_validator('province', mode='before')
    @classmethod
    def normalize_province(cls, v):
        return (v or '').strip().upper()

    @field_validator('complexity_level', mode='before')
    @classmethod
    def normalize_complexity(cls, v):
        return (v or '').strip().lower()

    @field_validator('business_name', 'industry', 'city', 'communication_style', 'preferred_channel', mode='before')
    @classmethod
    def none_to_empty(cls, v):
        return v or ''

    @classmethod
    def from_model(cls, obj) -> 'ClientData':
        return cls.model_validate(obj, from_attributes=True)


# ────────────────────────────────────────────────────────────────
# Inbound events
# ────────────────────────────────────────────────────────────────

class OutcomeReport(BaseModel):
    """A (possibly partial) report on how a match turned out."""
    match_id: str = Field(min_length=1)
    provider_id: Optional[str] = None
    client_id: Optional[str] = None
    partnership_formed: Optional[bool] = None
    partnership_status: Optional[str] = None
    partnership_start_date: Optional[date] = None
    provider_satisfaction: Optional[float] = Field(default=None, ge=1, le=10)
    client_satisfaction: Optional[float] = Field(default=None, ge=1, le=10)
    revenue_generated: Optional[float] = Field(default=None, ge=0)
    project_value: Optional[float] = Field(default=None, ge=0)
    ongoing_monthly_value: Optional[float] = Field(default=None, ge=0)
    contact_made: Optional[bool] = None
    proposal_submitted: Optional[bool] = None
    contract_signed: Optional[bool] = None
    factor_values: Optional[Dict[str, float]] = None

    @field_validator('partnership_status')
    @classmethod
    def check_status(cls, v):
        if v is not None and v not in {'pending', 'active', 'completed', 'ended', 'declined'}:
            raise ValueError(f"unknown partnership status: {v}")
        return v

    @field_validator('factor_values')
    @classmethod
    def check_factor_values(cls, v):
        if v is None:
            return v
        for name, value in v.items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"factor value for {name} must be within [0, 1]")
        return v

    def to_fields(self) -> dict:
        """Fields to write on upsert. Fields the reporter did not send keep their stored values."""
        return self.model_dump(exclude_unset=True, exclude={'match_id'})


class InteractionEvent(BaseModel):
    """One communication event between provider and client."""
    match_id: str = Field(min_length=1)
    provider_id: str = ""
    client_id: str = ""
    channel: str = ""
    interaction_type: str = ""
    quality_score: Optional[float] = Field(default=None, ge=1, le=10)
    response_time_hours: Optional[float] = Field(default=None, ge=0)
    content_length: Optional[int] = Field(default=None, ge=0)
    occurred_at: Optional[datetime] = None


class MilestoneEvent(BaseModel):
    """A funnel milestone reached on a match."""
    match_id: str = Field(min_length=1)
    provider_id: str = ""
    milestone_type: str = Field(min_length=1)
    funnel_stage: str = ""
    quality_score: Optional[float] = Field(default=None, ge=0, le=10)
    hours_to_reach: Optional[float] = Field(default=None, ge=0)
    reached_at: Optional[datetime] = None

    @field_validator('funnel_stage')
    @classmethod
    def check_stage(cls, v):
        if v and v not in {'awareness', 'contact', 'consultation', 'proposal', 'negotiation', 'signed'}:
            raise ValueError(f"unknown funnel stage: {v}")
        return v


def parse_payload(schema: Type[SchemaT], data) -> SchemaT:
    """Validate ``data`` against ``schema``, raising the engine's ValidationError."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(data)
    except PydanticValidationError as exc:
        fields = [".".join(str(p) for p in err['loc']) for err in exc.errors()]
        raise ValidationError(
            f"invalid {schema.__name__}: {', '.join(fields) or 'payload'}",
            fields=fields,
        ) from exc
