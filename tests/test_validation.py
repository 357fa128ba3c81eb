"""Tests for PCC field validation and condition rules."""
from datetime import date

import pytest

from app.pccportal.modules.pcc.validation import (
    CONDITION_RULES,
    add_months,
    is_valid_registration_no,
    is_valid_vin,
    parse_positive_int,
    validate_submission,
)

TODAY = date(2024, 6, 1)


def _payload(**overrides):
    p = {
        "brand": "volkswagen",
        "model": "Virtus",
        "vin": "WVWZZZ3CZWE123456",
        "registration_no": "DL01AB1234",
        "production_date": "2023-06-15",
        "condition_type": "warranty_cases",
        "number_of_claims": 5,
        "fault_code": "P0299",
        "topic": "dealer_pcc",
        "subtopic": "engine",
        "engine_code": "CZDA",
        "gearbox_code": "DQ200",
        "mileage": 25000,
        "repair_date": "2024-01-10",
        "part_description": "Turbocharger Assembly",
        "damage_part_number": "04E145721B",
        "declaration_accepted": True,
    }
    p.update(overrides)
    return p


@pytest.mark.parametrize(
    "vin",
    ["WVWZZZ3CZWE123456", "TMBJC9NE9N0123456", "wvwzzz5nzxe654321", "ABCDEFGHJKLMNPRST"],
)
def test_vin_accepts_17_allowed_characters(vin):
    assert is_valid_vin(vin)


@pytest.mark.parametrize(
    "vin",
    [
        "WVWZZZ3CZWE12345",  # 16 chars
        "WVWZZZ3CZWE1234567",  # 18 chars
        "WVWZZZ3CZWI123456",  # I
        "WVWZZZ3CZWO123456",  # O
        "WVWZZZ3CZWQ123456",  # Q
        "WVWZZZ3CZW-123456",
        "",
        None,
    ],
)
def test_vin_rejects_bad_values(vin):
    assert not is_valid_vin(vin)


def test_registration_number_format():
    assert is_valid_registration_no("DL01AB1234")
    assert is_valid_registration_no("MH12A1234")
    assert is_valid_registration_no("dl 01 ab 1234")
    assert not is_valid_registration_no("D01AB1234")
    assert not is_valid_registration_no("DL01ABC1234")


def test_parse_positive_int():
    assert parse_positive_int("25000") == 25000
    assert parse_positive_int(3) == 3
    assert parse_positive_int(0) is None
    assert parse_positive_int("-4") is None
    assert parse_positive_int("12.5") is None
    assert parse_positive_int(True) is None


def test_add_months_clamps_day():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)


def test_valid_payload_is_normalised():
    cleaned, errors = validate_submission(
        _payload(vin="wvwzzz3czwe123456", registration_no="dl 01 ab 1234", damage_part_number="04e145721b"),
        today=TODAY,
    )
    assert errors == {}
    assert cleaned["vin"] == "WVWZZZ3CZWE123456"
    assert cleaned["registration_no"] == "DL01AB1234"
    assert cleaned["damage_part_number"] == "04E145721B"
    assert cleaned["warranty_period"] == "lte_2_years"
    assert cleaned["production_date"] == date(2023, 6, 15)


def test_missing_fields_are_reported_per_field():
    _, errors = validate_submission({}, today=TODAY)
    for key in ("brand", "model", "vin", "registration_no", "production_date", "subtopic", "fault_code",
                "mileage", "repair_date", "part_description", "damage_part_number", "condition_type",
                "declaration_accepted"):
        assert key in errors


def test_date_rules():
    _, errors = validate_submission(_payload(production_date="2024-06-02"), today=TODAY)
    assert "production_date" in errors
    # built today counts as in the past
    _, errors = validate_submission(_payload(production_date="2024-06-01"), today=TODAY)
    assert "production_date" not in errors
    _, errors = validate_submission(_payload(repair_date="2024-06-02"), today=TODAY)
    assert "repair_date" in errors
    _, errors = validate_submission(_payload(repair_date="10/01/2024"), today=TODAY)
    assert "repair_date" in errors


def test_warranty_cases_need_five_claims():
    _, errors = validate_submission(_payload(number_of_claims=4), today=TODAY)
    assert "number_of_claims" in errors
    _, errors = validate_submission(_payload(number_of_claims=5), today=TODAY)
    assert errors == {}


def test_post_warranty_cases_need_ten_claims():
    _, errors = validate_submission(_payload(condition_type="post_warranty_cases", number_of_claims=9), today=TODAY)
    assert "number_of_claims" in errors
    cleaned, errors = validate_submission(
        _payload(condition_type="post_warranty_cases", number_of_claims=10), today=TODAY
    )
    assert errors == {}
    assert cleaned["warranty_period"] == "gt_2_years"


def test_after_countermeasure_requires_date():
    _, errors = validate_submission(_payload(condition_type="after_countermeasure", number_of_claims=3), today=TODAY)
    assert "countermeasure_date" in errors
    _, errors = validate_submission(
        _payload(condition_type="after_countermeasure", number_of_claims=3, countermeasure_date="2023-12-01"),
        today=TODAY,
    )
    assert errors == {}


def test_new_model_launch_repair_within_three_months_of_sale():
    base = {"condition_type": "new_model_launch", "number_of_claims": 3, "sale_date": "2024-01-01"}
    _, errors = validate_submission(_payload(repair_date="2024-05-01", **base), today=TODAY)
    assert "repair_date" in errors
    _, errors = validate_submission(_payload(repair_date="2024-03-01", **base), today=TODAY)
    assert errors == {}


def test_new_model_launch_requires_sale_date():
    _, errors = validate_submission(_payload(condition_type="new_model_launch", number_of_claims=3), today=TODAY)
    assert "sale_date" in errors


def test_breakdown_and_repeat_repairs_force_flags():
    cleaned, errors = validate_submission(_payload(condition_type="breakdown_cases", number_of_claims=3), today=TODAY)
    assert errors == {}
    assert cleaned["breakdown"] is True

    _, errors = validate_submission(_payload(condition_type="repeat_repairs", number_of_repairs=1), today=TODAY)
    assert "number_of_repairs" in errors
    cleaned, errors = validate_submission(_payload(condition_type="repeat_repairs", number_of_repairs=2), today=TODAY)
    assert errors == {}
    assert cleaned["repeated_repair"] is True


def test_tpi_unavailable_needs_a_zero():
    _, errors = validate_submission(_payload(condition_type="tpi_unavailable", tpi_result=1, repair_success=1), today=TODAY)
    assert "tpi_result" in errors
    _, errors = validate_submission(_payload(condition_type="tpi_unavailable", tpi_result=0), today=TODAY)
    assert errors == {}


def test_every_condition_type_has_a_rule():
    assert set(CONDITION_RULES) == {
        "warranty_cases",
        "post_warranty_cases",
        "after_countermeasure",
        "new_model_launch",
        "breakdown_cases",
        "repeat_repairs",
        "tpi_unavailable",
    }


def test_attachment_limits():
    three = [{"name": f"photo{i}.jpg", "size": 1024, "type": "image/jpeg"} for i in range(3)]
    cleaned, errors = validate_submission(_payload(attachments=three), today=TODAY)
    assert errors == {}
    assert len(cleaned["attachments"]) == 3

    _, errors = validate_submission(_payload(attachments=three + [{"name": "x.jpg", "size": 1}]), today=TODAY)
    assert "attachments" in errors

    big = [{"name": "video.mp4", "size": 501 * 1024 * 1024}]
    _, errors = validate_submission(_payload(attachments=big), today=TODAY)
    assert "attachments" in errors


def test_diss_ticket_must_be_numeric_and_model_must_match_brand():
    _, errors = validate_submission(_payload(diss_ticket_no="AB12"), today=TODAY)
    assert "diss_ticket_no" in errors
    _, errors = validate_submission(_payload(brand="skoda", model="Virtus"), today=TODAY)
    assert "model" in errors
