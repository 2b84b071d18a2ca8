from __future__ import annotations

import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

from . import rules

load_dotenv()


class ColumnMap(BaseModel):
    """Header names the engine resolves by exact match."""

    model_config = ConfigDict(frozen=True)

    spend: str = rules.DEFAULT_SPEND_COLUMN
    impressions: str = rules.DEFAULT_IMPRESSIONS_COLUMN
    clicks: str = rules.DEFAULT_CLICKS_COLUMN
    results: str = rules.DEFAULT_RESULTS_COLUMN
    revenue: str = rules.DEFAULT_REVENUE_COLUMN
    leads: str = rules.DEFAULT_LEADS_COLUMN
    objective: Optional[str] = rules.DEFAULT_OBJECTIVE_COLUMN
    name: Optional[str] = rules.DEFAULT_NAME_COLUMN
    campaign_id: Optional[str] = rules.DEFAULT_CAMPAIGN_ID_COLUMN
    ad_set_id: Optional[str] = rules.DEFAULT_AD_SET_ID_COLUMN

    def summed_fields(self) -> dict[str, str]:
        return {
            "spend": self.spend,
            "impressions": self.impressions,
            "clicks": self.clicks,
            "results": self.results,
            "revenue": self.revenue,
            "leads": self.leads,
        }


DEFAULT_COLUMNS = ColumnMap()

LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    anthropic_api_key: Optional[str] = None
    anthropic_base_url: str = "https://api.anthropic.com"
    model: str = "claude-sonnet-4-5"
    max_tokens: int = Field(default=2000, gt=0)
    timeout: float = Field(default=60.0, gt=0)
    skip_summary_rows: bool = False
    log_level: LogLevel = "INFO"
    columns: ColumnMap = Field(default_factory=ColumnMap)

    @property
    def narrative_enabled(self) -> bool:
        return bool(self.anthropic_api_key)

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Build settings from the process environment (after .env is loaded).

        Column overrides use ADPILOT_COLUMN_<FIELD>, e.g.
        ADPILOT_COLUMN_SPEND="Amount spent (USD)".
        """
        column_overrides = {}
        for field in ColumnMap.model_fields:
            value = os.getenv(f"ADPILOT_COLUMN_{field.upper()}")
            if value:
                column_overrides[field] = value

        return cls(
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com"),
            model=os.getenv("ADPILOT_MODEL", "claude-sonnet-4-5"),
            max_tokens=int(os.getenv("ADPILOT_MAX_TOKENS", "2000")),
            timeout=float(os.getenv("ADPILOT_TIMEOUT", "60")),
            skip_summary_rows=_env_bool("ADPILOT_SKIP_SUMMARY_ROWS"),
            log_level=os.getenv("ADPILOT_LOG_LEVEL", "INFO").upper(),
            columns=ColumnMap(**column_overrides),
        )
