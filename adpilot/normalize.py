"""
Core parsing and aggregation logic.

Responsibilities:
- payload decoding (charset detection)
- field normalization (EU/US separators, currency symbols, placeholders)
- line tokenization with quoted fields
- column resolution by exact header name
- metric aggregation and derived ratios
"""

from __future__ import annotations

import logging
import math
import re
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from charset_normalizer import from_bytes

from . import rules
from .config import DEFAULT_COLUMNS, ColumnMap

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r?\n")
_TRAILING_DECIMAL_COMMA = re.compile(r",\d{2}$")
_NUMERIC_PREFIX = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_UTF8_BOM = b"\xef\xbb\xbf"


class TableError(ValueError):
    """Raised when a payload cannot be aggregated. The message is user-facing."""


class MissingInput(TableError):
    def __init__(self, message: str = "No file uploaded"):
        super().__init__(message)


class EmptyInput(TableError):
    def __init__(self, message: str = "CSV file is empty"):
        super().__init__(message)


def decode_payload(raw: Optional[bytes]) -> str:
    """
    Decode uploaded bytes to text.

    Encoding is detected best-effort via charset-normalizer. A UTF-8 BOM is
    dropped. If the detected codec fails, decode as UTF-8 with replacement
    characters so parsing can continue.
    """
    if raw is None:
        raise MissingInput()

    match = from_bytes(raw).best()
    encoding = match.encoding if match is not None else "utf-8"
    if raw.startswith(_UTF8_BOM) and encoding.lower().replace("-", "_") in ("utf_8", "utf8"):
        encoding = "utf-8-sig"

    try:
        return raw.decode(encoding)
    except (LookupError, UnicodeDecodeError):
        logger.warning("Could not decode payload as %s, falling back to utf-8 with replacement", encoding)
        return raw.decode("utf-8", errors="replace")


def to_number(value: Any) -> float:
    """
    Normalize one raw cell to a finite number. Never raises.

    - None, "" and "-" are 0; real numbers pass through (non-finite -> 0)
    - whitespace and currency symbols are stripped
    - "1.234,56" (both separators): dot is thousands, comma is decimal
    - "123,45" (comma + exactly two trailing digits): comma is decimal
    - "1,234" (any other comma-only text): commas are thousands
    - the leading numeric prefix is parsed; no prefix -> 0
    """
    if value is None:
        return 0.0
    if isinstance(value, float):
        return value if math.isfinite(value) else 0.0
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return value if math.isfinite(value) else 0.0
        except OverflowError:
            return 0.0

    text = str(value)
    if text in rules.PLACEHOLDER_VALUES:
        return 0.0

    text = "".join(text.split())
    for symbol in rules.CURRENCY_SYMBOLS:
        text = text.replace(symbol, "")

    if "." in text and "," in text:
        text = text.replace(".", "").replace(",", ".")
    elif "," in text:
        if _TRAILING_DECIMAL_COMMA.search(text):
            whole, _, fraction = text.rpartition(",")
            text = whole.replace(",", "") + "." + fraction
        else:
            text = text.replace(",", "")

    match = _NUMERIC_PREFIX.match(text)
    if match is None:
        return 0.0
    number = float(match.group())
    return number if math.isfinite(number) else 0.0


def split_line(line: str, delimiter: str = rules.NORMALIZED_DELIMITER) -> List[str]:
    """
    Split one line into trimmed fields.

    Quote characters toggle the quoted state and are dropped; a delimiter
    inside quotes is kept as data. Doubled quotes are not unescaped, and an
    unbalanced quote simply stays open until the end of the line.
    """
    fields: List[str] = []
    current: List[str] = []
    in_quotes = False

    for char in line:
        if char == rules.QUOTE_CHAR:
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append("".join(current).strip())
            current = []
        else:
            current.append(char)

    fields.append("".join(current).strip())
    return fields


def split_lines(text: str) -> List[str]:
    return [line for line in _LINE_BREAK.split(text) if line.strip()]


def round_half_up(value: float, decimals: int = rules.MONEY_DECIMALS) -> float:
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _ratio(numerator: Optional[float], denominator: Optional[float], scale: float = 1.0) -> Optional[float]:
    if numerator is None or denominator is None or denominator <= 0:
        return None
    return round_half_up(numerator / denominator * scale)


def _position(column_names: List[str], header: Optional[str]) -> Optional[int]:
    if header is None or header not in column_names:
        return None
    return column_names.index(header)


def resolve_columns(column_names: List[str], columns: ColumnMap = DEFAULT_COLUMNS) -> Mapping[str, Optional[int]]:
    """Map each summed field to its header position, or None when absent."""
    index = {field: _position(column_names, header) for field, header in columns.summed_fields().items()}
    return MappingProxyType(index)


def _cell(row: List[str], position: Optional[int]) -> str:
    if position is None or position >= len(row):
        return ""
    return row[position]


def derive_metrics(sums: Mapping[str, Optional[float]]) -> Dict[str, Any]:
    """Round money sums and compute guarded ratios from per-field totals."""
    spend = sums.get("spend")
    impressions = sums.get("impressions")
    clicks = sums.get("clicks")
    results = sums.get("results")
    revenue = sums.get("revenue")
    leads = sums.get("leads")

    return {
        "totalSpend": round_half_up(spend) if spend is not None else None,
        "totalImpressions": impressions,
        "totalClicks": clicks,
        "totalResults": results,
        "totalLeads": leads,
        "totalRevenue": round_half_up(revenue) if revenue is not None else None,
        "ctr": _ratio(clicks, impressions, 100),
        "cpc": _ratio(spend, clicks),
        "cpa": _ratio(spend, results),
        "cpl": _ratio(spend, leads),
        "cpm": _ratio(spend, impressions, 1000),
        "roas": _ratio(revenue, spend),
    }


def detect_goal(objective: Optional[str], sums: Mapping[str, Optional[float]]) -> str:
    if objective:
        lowered = objective.lower()
        for keywords, goal in rules.OBJECTIVE_GOALS:
            if any(keyword in lowered for keyword in keywords):
                return goal

    if (sums.get("results") or 0) > 0:
        return "purchases"
    if (sums.get("leads") or 0) > 0:
        return "leads"
    if (sums.get("clicks") or 0) > 0:
        return "clicks"
    return "reach"


def primary_kpi(goal: str, metrics: Mapping[str, Any]) -> Dict[str, Any]:
    if goal == "purchases":
        key = "roas" if metrics["roas"] is not None else "cpa"
        label = rules.PRIMARY_KPI_LABELS[key]
    elif goal == "leads":
        key, label = "cpl", rules.PRIMARY_KPI_LABELS["cpl"]
    elif goal == "clicks":
        key, label = "cpc", rules.PRIMARY_KPI_LABELS["cpc"]
    else:
        key, label = "cpm", rules.PRIMARY_KPI_LABELS["cpm"]

    return {
        "goal": goal,
        "primaryKpiKey": key,
        "primaryKpiLabel": label,
        "primaryKpiValue": metrics[key],
    }


def _is_summary_row(row: List[str], name_at: Optional[int], id_positions: List[Optional[int]]) -> bool:
    """Blank or "total"/"summary" name, or campaign and ad set IDs both 0."""
    if name_at is not None:
        lowered = _cell(row, name_at).strip().lower()
        if not lowered or any(keyword in lowered for keyword in rules.SUMMARY_ROW_KEYWORDS):
            return True
    if id_positions and all(position is not None for position in id_positions):
        return all(to_number(_cell(row, position)) == 0 for position in id_positions)
    return False


def _matches_rest(value: float, rest: float) -> bool:
    return rest > 0 and abs(value - rest) / rest < rules.TOTAL_ROW_TOLERANCE


def find_total_row(values: List[Mapping[str, float]], fields: List[str]) -> Optional[int]:
    """
    Position of the first row whose value for every field equals the sum of
    all other rows within TOTAL_ROW_TOLERANCE, or None.
    """
    if not fields or len(values) < rules.TOTAL_ROW_MIN_ROWS:
        return None

    totals = {field: sum(row[field] for row in values) for field in fields}
    for position, row in enumerate(values):
        if all(_matches_rest(row[field], totals[field] - row[field]) for field in fields):
            return position
    return None


def aggregate_metrics(
    text: Optional[str],
    columns: ColumnMap = DEFAULT_COLUMNS,
    *,
    skip_summary_rows: bool = False,
) -> Dict[str, Any]:
    """
    Aggregate a delimited table into totals and derived metrics.

    Raises MissingInput / EmptyInput; cells that do not parse count as 0 and
    absent columns yield None for every metric that depends on them.
    """
    if text is None:
        raise MissingInput()
    if not text.strip():
        raise EmptyInput()

    lines = split_lines(text)
    if not lines:
        raise EmptyInput()

    column_names = split_line(lines[0])
    data_lines = lines[1:]
    if not data_lines:
        raise EmptyInput("CSV file has no data rows")

    index = resolve_columns(column_names, columns)
    objective_at = _position(column_names, columns.objective)
    name_at = _position(column_names, columns.name)
    id_positions = [_position(column_names, columns.campaign_id), _position(column_names, columns.ad_set_id)]
    logger.debug("Column index: %s, objective=%s, name=%s", dict(index), objective_at, name_at)

    present = [field for field, position in index.items() if position is not None]
    kept = []
    skipped = 0

    for line_no, line in enumerate(data_lines, start=2):
        row = split_line(line)
        if skip_summary_rows and _is_summary_row(row, name_at, id_positions):
            logger.info("Skipping summary row at line %d", line_no)
            skipped += 1
            continue
        kept.append((row, {field: to_number(_cell(row, index[field])) for field in present}))

    if skip_summary_rows:
        total_fields = [field for field in rules.TOTAL_ROW_FIELDS if field in present]
        total_at = find_total_row([values for _, values in kept], total_fields)
        if total_at is not None:
            logger.info("Skipping grand total row %r", kept[total_at][0])
            del kept[total_at]
            skipped += 1

    objective = None
    if kept and objective_at is not None:
        objective = _cell(kept[0][0], objective_at) or None

    sums: Dict[str, Optional[float]] = {field: (0.0 if field in present else None) for field in index}
    per_ad: Dict[str, Dict[str, float]] = {}

    for row, values in kept:
        for field, value in values.items():
            sums[field] += value

        if name_at is not None:
            name = _cell(row, name_at) or "Unknown"
            group = per_ad.setdefault(name, {field: 0.0 for field in present})
            for field, value in values.items():
                group[field] += value

    metrics = derive_metrics(sums)
    metrics.update(primary_kpi(detect_goal(objective, sums), metrics))
    logger.debug("Totals: %s", sums)

    ads = []
    for name, group in per_ad.items():
        ad_sums = {field: group.get(field) for field in index}
        if ad_sums["spend"] is not None and ad_sums["spend"] <= 0:
            continue
        ad = derive_metrics(ad_sums)
        ad["name"] = name
        ads.append(ad)

    return {
        "rowCount": len(data_lines),
        "columnNames": column_names,
        "metrics": metrics,
        "ads": ads,
        "skippedRows": skipped,
    }


def analyze_table(
    text: Optional[str],
    columns: ColumnMap = DEFAULT_COLUMNS,
    *,
    skip_summary_rows: bool = False,
) -> Dict[str, Any]:
    """
    Boundary wrapper: returns {"ok": True, ...} or {"ok": False, "error": ...}.
    Taxonomy errors never escape.
    """
    try:
        result = aggregate_metrics(text, columns, skip_summary_rows=skip_summary_rows)
    except TableError as exc:
        logger.info("Table rejected: %s", exc)
        return {"ok": False, "error": str(exc)}
    return {"ok": True, **result}


def analyze_upload(
    raw: Optional[bytes],
    columns: ColumnMap = DEFAULT_COLUMNS,
    *,
    skip_summary_rows: bool = False,
) -> Dict[str, Any]:
    try:
        text = decode_payload(raw)
    except TableError as exc:
        return {"ok": False, "error": str(exc)}
    return analyze_table(text, columns, skip_summary_rows=skip_summary_rows)
