"""
Deterministic parsing and aggregation rules.

Defaults only; the engine receives its column names as a ColumnMap so callers
and tests can substitute their own.
"""

NORMALIZED_DELIMITER = ","
QUOTE_CHAR = '"'
PLACEHOLDER_VALUES = ("", "-")
CURRENCY_SYMBOLS = ("€", "$")
MONEY_DECIMALS = 2

# Meta Ads Manager export headers (exact, case-sensitive)
DEFAULT_SPEND_COLUMN = "Amount spent (EUR)"
DEFAULT_IMPRESSIONS_COLUMN = "Impressions"
DEFAULT_CLICKS_COLUMN = "Clicks (all)"
DEFAULT_RESULTS_COLUMN = "Purchases"
DEFAULT_REVENUE_COLUMN = "Purchases conversion value"
DEFAULT_LEADS_COLUMN = "Leads"
DEFAULT_OBJECTIVE_COLUMN = "Objective"
DEFAULT_NAME_COLUMN = "Ad name"
DEFAULT_CAMPAIGN_ID_COLUMN = "Campaign ID"
DEFAULT_AD_SET_ID_COLUMN = "Ad set ID"

SUMMARY_ROW_KEYWORDS = ("total", "summary")

# A row whose values for these fields each equal the sum of the other rows
# (within the relative tolerance) is the export's grand total.
TOTAL_ROW_FIELDS = ("spend", "impressions", "clicks")
TOTAL_ROW_TOLERANCE = 0.02
TOTAL_ROW_MIN_ROWS = 3

# Objective keywords -> goal, checked in order
OBJECTIVE_GOALS = (
    (("lead",), "leads"),
    (("conversion", "purchase", "sales"), "purchases"),
    (("traffic",), "clicks"),
    (("reach", "awareness"), "reach"),
)

PRIMARY_KPI_LABELS = {
    "roas": "Return on Ad Spend",
    "cpa": "Cost per Purchase",
    "cpl": "Cost per Lead",
    "cpc": "Cost per Click",
    "cpm": "Cost per 1000 Impressions",
}

ANTHROPIC_VERSION = "2023-06-01"

NARRATIVE_PROFILES = {
    "analysis": """You are AdPilot, an AI performance analyst.
INPUT: aggregate metrics of a Meta ads export and, when available, a per-ad breakdown.
Metrics that are null were not present in the export; never treat them as zero.

Evaluate overall performance against industry benchmarks
(CTR: excellent > 2.5%, good 1.5-2.5%, weak 0.5-1.5%, critical < 0.5%).
Rank ads by the primary KPI given in the metrics.

Return ONLY this JSON, no markdown:
{
  "score": number (0-100),
  "verdict": "1-3 sentence summary",
  "bestPerformers": [{"label": "...", "badge": "...", "reason": "..."}],
  "needsAttention": [{"label": "...", "badge": "...", "reason": "..."}]
}""",
    "media_plan": """You are an API endpoint.
ROLE: Ad Strategist and Forecaster.
INPUT: business details, budget, AOV, industry and marketing goal.
OUTPUT: valid JSON only. Do not wrap the JSON in markdown fences.

{
  "quickVerdict": "short summary of the strategy",
  "benchmarks": {"cpm": number, "cpc": number, "ctr": number, "cpa": number, "roas": number},
  "forecast": {"totalBudget": number, "impressionsRange": "...", "clicksRange": "...", "conversionsRange": "..."},
  "structure": [{"name": "...", "goal": "...", "budgetAllocation": "...", "reason": "..."}],
  "roadmap": [{"week": "...", "title": "...", "description": "..."}]
}

Base all numbers on the provided input and industry standards.""",
    "recommendations": """You are AdPilot, a paid social strategist.
INPUT: either aggregate campaign metrics or the user's answers about their business.
Produce concrete next steps for the advertiser.

Return ONLY this JSON, no markdown:
{
  "summary": "one sentence",
  "recommendations": [{"title": "...", "priority": "high" | "medium" | "low", "action": "...", "expectedImpact": "..."}]
}""",
}
