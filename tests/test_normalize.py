import math

import pytest

from adpilot.config import ColumnMap
from adpilot.normalize import (
    EmptyInput,
    MissingInput,
    aggregate_metrics,
    analyze_table,
    decode_payload,
    resolve_columns,
    round_half_up,
    split_line,
    to_number,
)

HEADER = "Amount spent (EUR),Impressions,Clicks (all),Purchases,Purchases conversion value"
TABLE = HEADER + "\n100,1000,50,5,500\n50,500,25,2,200"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1.234,56", 1234.56),
        ("1,234", 1234),
        ("123,45", 123.45),
        ("1,234,567", 1234567),
        ("1,234,56", 1234.56),
        ("1234.5", 1234.5),
        ("€ 1.234,56", 1234.56),
        ("$12.50", 12.5),
        (" 7 ", 7),
        ("12.5%", 12.5),
        ("-3,50", -3.5),
    ],
)
def test_to_number_formats(raw, expected):
    assert to_number(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", ["", None, "-", "abc", "n/a", "Infinity", "1e999", 10**400])
def test_to_number_falls_back_to_zero(raw):
    assert to_number(raw) == 0


def test_to_number_passes_numbers_through():
    assert to_number(42) == 42
    assert to_number(3.75) == 3.75
    assert to_number(float("nan")) == 0
    assert to_number(True) == 0


def test_split_line_keeps_quoted_delimiter():
    assert split_line('a,"b,c",d') == ["a", "b,c", "d"]


def test_split_line_trims_and_keeps_empty_fields():
    assert split_line(" a , ,c,") == ["a", "", "c", ""]


def test_split_line_unbalanced_quote_stays_open():
    assert split_line('a,"b,c') == ["a", "b,c"]


def test_split_line_does_not_unescape_doubled_quotes():
    assert split_line('"say ""hi""",x') == ["say hi", "x"]


def test_split_line_custom_delimiter():
    assert split_line("a;b;c", delimiter=";") == ["a", "b", "c"]


def test_round_half_up():
    assert round_half_up(2.675) == 2.68
    assert round_half_up(21.428571) == 21.43
    assert round_half_up(0.125) == 0.13


def test_resolve_columns_exact_match_only():
    index = resolve_columns(["impressions", "Impressions", "Clicks (all)"])
    assert index["impressions"] == 1
    assert index["clicks"] == 2
    assert index["spend"] is None
    with pytest.raises(TypeError):
        index["spend"] = 0


def test_end_to_end_example():
    result = analyze_table(TABLE)
    assert result["ok"] is True
    assert result["rowCount"] == 2
    assert result["columnNames"] == HEADER.split(",")

    metrics = result["metrics"]
    assert metrics["totalSpend"] == 150
    assert metrics["totalImpressions"] == 1500
    assert metrics["totalClicks"] == 75
    assert metrics["totalResults"] == 7
    assert metrics["totalRevenue"] == 700
    assert metrics["ctr"] == 5.0
    assert metrics["cpc"] == 2.0
    assert metrics["cpa"] == 21.43
    assert metrics["roas"] == 4.67
    assert metrics["cpm"] == 100.0


def test_crlf_and_blank_lines():
    text = HEADER + "\r\n\r\n100,1000,50,5,500\r\n   \r\n50,500,25,2,200\r\n"
    result = analyze_table(text)
    assert result["rowCount"] == 2
    assert result["metrics"]["totalSpend"] == 150


def test_idempotent():
    first = analyze_table(TABLE)
    second = analyze_table(TABLE)
    assert first["metrics"] == second["metrics"]
    assert first["rowCount"] == second["rowCount"]


def test_absent_impressions_column_is_null_not_zero():
    text = "Amount spent (EUR),Clicks (all),Purchases,Purchases conversion value\n100,50,5,500\n50,25,2,200"
    metrics = analyze_table(text)["metrics"]
    assert metrics["totalImpressions"] is None
    assert metrics["ctr"] is None
    assert metrics["cpm"] is None
    assert metrics["totalSpend"] == 150
    assert metrics["cpc"] == 2.0
    assert metrics["cpa"] == 21.43
    assert metrics["roas"] == 4.67


def test_zero_clicks_gives_null_cpc():
    text = HEADER + "\n100,1000,0,5,500\n50,500,,2,200"
    metrics = analyze_table(text)["metrics"]
    assert metrics["totalClicks"] == 0
    assert metrics["cpc"] is None
    assert metrics["ctr"] == 0


def test_ragged_rows_count_missing_cells_as_zero():
    text = HEADER + "\n100,1000,50\n50,500,25,2,200"
    metrics = analyze_table(text)["metrics"]
    assert metrics["totalClicks"] == 75
    assert metrics["totalResults"] == 2
    assert metrics["totalRevenue"] == 200


def test_eu_formatted_and_quoted_cells():
    text = HEADER + '\n"1.234,50","10,000",50,5,"2.469,00"\n'
    metrics = analyze_table(text)["metrics"]
    assert metrics["totalSpend"] == 1234.5
    assert metrics["totalImpressions"] == 10000
    assert metrics["roas"] == 2.0


def test_unparseable_cells_do_not_abort():
    text = HEADER + "\nn/a,1000,50,5,500\n-,500,25,2,200"
    metrics = analyze_table(text)["metrics"]
    assert metrics["totalSpend"] == 0
    assert metrics["cpc"] == 0
    assert metrics["roas"] is None
    assert metrics["ctr"] == 5.0


@pytest.mark.parametrize("text", ["", "   ", "\n\r\n"])
def test_empty_input(text):
    assert analyze_table(text) == {"ok": False, "error": "CSV file is empty"}


def test_header_only():
    assert analyze_table(HEADER + "\n") == {"ok": False, "error": "CSV file has no data rows"}


def test_missing_input():
    assert analyze_table(None) == {"ok": False, "error": "No file uploaded"}
    with pytest.raises(MissingInput):
        aggregate_metrics(None)
    with pytest.raises(EmptyInput):
        aggregate_metrics("")


def test_substituted_column_names():
    columns = ColumnMap(spend="Cost", impressions="Impr.", clicks="Clicks", results="Conversions", revenue="Value")
    text = "Cost,Impr.,Clicks,Conversions,Value\n10,100,4,1,30"
    metrics = analyze_table(text, columns)["metrics"]
    assert metrics["totalSpend"] == 10
    assert metrics["cpc"] == 2.5
    assert metrics["roas"] == 3.0

    default = analyze_table(text)["metrics"]
    assert default["totalSpend"] is None
    assert default["cpa"] is None


def test_goal_inferred_from_results():
    metrics = analyze_table(TABLE)["metrics"]
    assert metrics["goal"] == "purchases"
    assert metrics["primaryKpiKey"] == "roas"
    assert metrics["primaryKpiValue"] == 4.67


def test_goal_from_objective_column():
    text = "Objective,Amount spent (EUR),Leads,Purchases\nOUTCOME_LEADS,90,15,1\nOUTCOME_LEADS,10,5,0"
    metrics = analyze_table(text)["metrics"]
    assert metrics["goal"] == "leads"
    assert metrics["totalLeads"] == 20
    assert metrics["primaryKpiKey"] == "cpl"
    assert metrics["primaryKpiLabel"] == "Cost per Lead"
    assert metrics["primaryKpiValue"] == 5.0
    assert metrics["cpa"] == 100.0


def test_goal_inferred_from_leads_before_clicks():
    text = "Amount spent (EUR),Leads,Clicks (all)\n40,8,100"
    metrics = analyze_table(text)["metrics"]
    assert metrics["goal"] == "leads"
    assert metrics["cpl"] == 5.0
    assert metrics["totalResults"] is None
    assert metrics["cpa"] is None


def test_objective_read_from_first_row_only():
    text = "Objective,Amount spent (EUR),Clicks (all)\n,10,5\nOUTCOME_AWARENESS,10,5"
    metrics = analyze_table(text)["metrics"]
    assert metrics["goal"] == "clicks"
    assert metrics["primaryKpiKey"] == "cpc"


def test_goal_falls_back_to_reach():
    text = "Amount spent (EUR),Impressions\n5,2000"
    metrics = analyze_table(text)["metrics"]
    assert metrics["goal"] == "reach"
    assert metrics["primaryKpiKey"] == "cpm"
    assert metrics["primaryKpiValue"] == 2.5


def test_per_ad_breakdown():
    text = (
        "Ad name,Amount spent (EUR),Impressions,Clicks (all)\n"
        "Video A,10,1000,20\n"
        "Image B,0,500,0\n"
        "Video A,5,500,10\n"
    )
    ads = analyze_table(text)["ads"]
    assert [ad["name"] for ad in ads] == ["Video A"]
    assert ads[0]["totalSpend"] == 15
    assert ads[0]["ctr"] == 2.0
    assert ads[0]["cpc"] == 0.5


def test_summary_rows_skipped_only_when_enabled():
    text = (
        "Ad name,Amount spent (EUR),Impressions\n"
        "Ad 1,10,100\n"
        "Ad 2,20,200\n"
        ",30,300\n"
    )
    assert analyze_table(text)["metrics"]["totalSpend"] == 60

    result = analyze_table(text, skip_summary_rows=True)
    assert result["rowCount"] == 3
    assert result["skippedRows"] == 1
    assert result["metrics"]["totalSpend"] == 30


def test_decode_payload_handles_bom_and_latin1():
    assert decode_payload(b"\xef\xbb\xbfa,b\n1,2\n") == "a,b\n1,2\n"
    assert "Montréal" in decode_payload("name,city\nPaul,Montréal\n".encode("latin-1"))
    with pytest.raises(MissingInput):
        decode_payload(None)


def test_metrics_are_finite():
    metrics = analyze_table(HEADER + "\n0,0,0,0,0")["metrics"]
    for key in ("ctr", "cpc", "cpa", "cpm", "roas"):
        assert metrics[key] is None
    for key in ("totalSpend", "totalImpressions", "totalClicks", "totalResults", "totalRevenue"):
        assert math.isfinite(metrics[key])


def test_grand_total_row_skipped_by_tolerance():
    text = "Ad name,Amount spent (EUR)\nA,10\nB,20\nAll ads,30\n"
    assert analyze_table(text)["metrics"]["totalSpend"] == 60

    result = analyze_table(text, skip_summary_rows=True)
    assert result["skippedRows"] == 1
    assert result["metrics"]["totalSpend"] == 30
    assert [ad["name"] for ad in result["ads"]] == ["A", "B"]


def test_grand_total_row_needs_every_field_to_match():
    text = (
        "Ad name,Amount spent (EUR),Impressions,Clicks (all)\n"
        "A,10,100,5\n"
        "B,20,200,5\n"
        "C,30.2,300,40\n"
    )
    result = analyze_table(text, skip_summary_rows=True)
    assert result["skippedRows"] == 0
    assert result["metrics"]["totalSpend"] == 60.2


def test_grand_total_row_within_two_percent():
    text = (
        "Ad name,Amount spent (EUR),Impressions,Clicks (all)\n"
        "A,10,100,5\n"
        "B,20,200,5\n"
        "Everything,30.3,300,10\n"
    )
    result = analyze_table(text, skip_summary_rows=True)
    assert result["skippedRows"] == 1
    assert result["metrics"]["totalClicks"] == 10


def test_two_rows_never_treated_as_grand_total():
    text = "Ad name,Amount spent (EUR)\nA,10\nB,10\n"
    result = analyze_table(text, skip_summary_rows=True)
    assert result["skippedRows"] == 0
    assert result["metrics"]["totalSpend"] == 20


def test_zero_campaign_and_ad_set_ids_skipped():
    text = (
        "Campaign ID,Ad set ID,Amount spent (EUR)\n"
        "123,456,10\n"
        "0,0,99\n"
        "123,0,5\n"
    )
    assert analyze_table(text)["metrics"]["totalSpend"] == 114

    result = analyze_table(text, skip_summary_rows=True)
    assert result["skippedRows"] == 1
    assert result["metrics"]["totalSpend"] == 15
