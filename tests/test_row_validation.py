from datetime import date

from sqlalchemy import text

from demand_import.parsers import ParsedForecastRow, ParsedSalesRow
from demand_import.validation import IssueReason, add_months, load_master_data, validate_rows

TODAY = date(2026, 1, 15)


def forecast_row(sku="SKU-001", retailer="Target", month=date(2026, 1, 1), quantity=10, row_number=2):
    return ParsedForecastRow(
        sku=sku,
        retailer=retailer,
        month=month,
        quantity=quantity,
        sheet_name="Jan 2026 PO",
        row_number=row_number,
    )


def reasons(issues):
    return [issue.reason for issue in issues]


def test_resolves_labels_to_master_ids(db_session):
    outcome = validate_rows(db_session, [forecast_row()], today=TODAY)

    assert list(outcome.valid) == [(1, 2, date(2026, 1, 1))]
    assert outcome.errors == []
    assert outcome.warnings == []


def test_negative_quantity_is_an_error_and_excluded(db_session):
    outcome = validate_rows(db_session, [forecast_row(quantity=-5)], today=TODAY)

    assert outcome.valid == {}
    assert reasons(outcome.errors) == [IssueReason.INVALID_QUANTITY]
    assert outcome.errors[0].field == "quantity"


def test_zero_quantity_is_a_warning_and_kept(db_session):
    outcome = validate_rows(db_session, [forecast_row(quantity=0)], today=TODAY)

    assert len(outcome.valid_rows) == 1
    assert outcome.valid_rows[0].row.quantity == 0
    assert reasons(outcome.warnings) == [IssueReason.ZERO_QUANTITY]
    assert outcome.errors == []


def test_unknown_sku_and_retailer_are_both_reported(db_session):
    row = forecast_row(sku="SKU-404", retailer="Nowhere Mart")

    outcome = validate_rows(db_session, [row], today=TODAY)

    assert outcome.valid == {}
    assert reasons(outcome.errors) == [IssueReason.UNKNOWN_SKU, IssueReason.UNKNOWN_RETAILER]
    assert outcome.errors[0].message == 'SKU "SKU-404" not found in master data'
    assert outcome.summary["error_rows"] == 1


def test_duplicate_key_keeps_the_later_row(db_session):
    first = forecast_row(quantity=5, row_number=2)
    second = forecast_row(quantity=9, row_number=7)

    outcome = validate_rows(db_session, [first, second], today=TODAY)

    assert len(outcome.valid) == 1
    assert outcome.valid[(1, 2, date(2026, 1, 1))].row.quantity == 9
    assert reasons(outcome.warnings) == [IssueReason.DUPLICATE_KEY]
    assert "row 2" in outcome.warnings[0].message


def test_labels_match_ignoring_case_and_spacing(db_session):
    row = forecast_row(sku="  sku-001 ", retailer=" WALMART\xa0")

    outcome = validate_rows(db_session, [row], today=TODAY)

    assert list(outcome.valid) == [(1, 1, date(2026, 1, 1))]


def test_case_sensitive_master_data_rejects_case_mismatch(db_session):
    master = load_master_data(db_session, case_insensitive=False)

    outcome = validate_rows(db_session, [forecast_row(sku="sku-001")], today=TODAY, master=master)

    assert reasons(outcome.errors) == [IssueReason.UNKNOWN_SKU]


def test_numeric_sku_codes_match_text_master_codes(db_session):
    outcome = validate_rows(db_session, [forecast_row(sku="12345", retailer="Costco")], today=TODAY)

    assert list(outcome.valid) == [(3, 3, date(2026, 1, 1))]


def test_far_future_month_warns_but_stays_valid(db_session):
    within = forecast_row(month=date(2027, 7, 1), row_number=2)
    beyond = forecast_row(month=date(2027, 8, 1), row_number=3)

    outcome = validate_rows(db_session, [within, beyond], today=TODAY)

    assert len(outcome.valid) == 2
    assert reasons(outcome.warnings) == [IssueReason.FAR_FUTURE_MONTH]
    assert outcome.warnings[0].row.row_number == 3


def test_far_past_month_warns(db_session):
    outcome = validate_rows(db_session, [forecast_row(month=date(2023, 12, 1))], today=TODAY)

    assert reasons(outcome.warnings) == [IssueReason.FAR_PAST_MONTH]
    assert len(outcome.valid) == 1


def test_errored_rows_still_report_their_warnings(db_session):
    row = forecast_row(sku="SKU-404", month=date(2030, 1, 1))

    outcome = validate_rows(db_session, [row], today=TODAY)

    assert reasons(outcome.errors) == [IssueReason.UNKNOWN_SKU]
    assert reasons(outcome.warnings) == [IssueReason.FAR_FUTURE_MONTH]


def test_sales_rows_resolve_like_forecast_rows(db_session):
    row = ParsedSalesRow(
        sku="SKU-002",
        retailer="Walmart",
        month=date(2026, 2, 1),
        quantity=12,
        sheet_name="Sales",
        row_number=2,
        revenue=120.5,
    )

    outcome = validate_rows(db_session, [row], today=TODAY)

    resolved = outcome.valid[(2, 1, date(2026, 2, 1))]
    assert resolved.row.revenue == 120.5


def test_summary_counts_rows_by_outcome(db_session):
    rows = [
        forecast_row(quantity=10, row_number=2),
        forecast_row(quantity=0, retailer="Walmart", row_number=3),
        forecast_row(quantity=-1, retailer="Costco", row_number=4),
        forecast_row(sku="SKU-404", row_number=5),
    ]

    summary = validate_rows(db_session, rows, today=TODAY).summary

    assert summary == {
        "total_rows": 4,
        "valid_rows": 2,
        "error_rows": 2,
        "warning_rows": 1,
        "errors_by_reason": {"INVALID_QUANTITY": 1, "UNKNOWN_SKU": 1},
        "warnings_by_reason": {"ZERO_QUANTITY": 1},
    }


def test_ambiguous_master_labels_keep_the_first_id(db_session):
    db_session.execute(text("INSERT INTO retailers (id, name) VALUES (4, 'TARGET')"))
    db_session.commit()

    master = load_master_data(db_session)

    assert master.retailer_id("target") == 2


def test_add_months_crosses_year_boundaries():
    assert add_months(date(2026, 1, 1), 18) == date(2027, 7, 1)
    assert add_months(date(2026, 1, 1), -24) == date(2024, 1, 1)
    assert add_months(date(2026, 11, 1), 2) == date(2027, 1, 1)
