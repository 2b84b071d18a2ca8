from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

NarrativeType = Literal["analysis", "media_plan", "recommendations"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Metrics(CamelModel):
    total_spend: Optional[float] = None
    total_impressions: Optional[float] = None
    total_clicks: Optional[float] = None
    total_results: Optional[float] = None
    total_leads: Optional[float] = None
    total_revenue: Optional[float] = None
    ctr: Optional[float] = None
    cpc: Optional[float] = None
    cpa: Optional[float] = None
    cpl: Optional[float] = None
    cpm: Optional[float] = None
    roas: Optional[float] = None
    goal: str = Field(default="reach", examples=["purchases"])
    primary_kpi_key: str = Field(default="cpm", examples=["roas"])
    primary_kpi_label: str = Field(default="Cost per 1000 Impressions", examples=["Return on Ad Spend"])
    primary_kpi_value: Optional[float] = None


class AdMetrics(CamelModel):
    name: str
    total_spend: Optional[float] = None
    total_impressions: Optional[float] = None
    total_clicks: Optional[float] = None
    total_results: Optional[float] = None
    total_leads: Optional[float] = None
    total_revenue: Optional[float] = None
    ctr: Optional[float] = None
    cpc: Optional[float] = None
    cpa: Optional[float] = None
    cpl: Optional[float] = None
    cpm: Optional[float] = None
    roas: Optional[float] = None


class AnalysisSuccess(CamelModel):
    ok: Literal[True] = True
    row_count: int
    column_names: List[str]
    metrics: Metrics
    ads: List[AdMetrics] = Field(default_factory=list)
    skipped_rows: int = 0
    insights: Optional[Dict[str, Any]] = None
    insights_error: Optional[str] = None


class Failure(CamelModel):
    ok: Literal[False] = False
    error: str


class NarrativeRequest(CamelModel):
    type: NarrativeType
    payload: Dict[str, Any] = Field(default_factory=dict)


class NarrativeResponse(CamelModel):
    ok: Literal[True] = True
    type: NarrativeType
    result: Optional[Dict[str, Any]] = None
    raw: str


class HealthResponse(BaseModel):
    ok: bool = True
