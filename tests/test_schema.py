"""Tests for pillar schema validation."""

import pytest

from catalog_pipeline.normalize.schema import (
    PillarSchemaSpec,
    ValidatedSpecifications,
    is_numeric,
    validate_specifications,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (120, True),
        (0.5, True),
        ("120", True),
        ("120 minutes", True),
        (" -3.5e2mm", True),
        (".75", True),
        ("approx. 120", False),
        ("", False),
        (True, False),
    ],
)
def test_is_numeric(value, expected):
    assert is_numeric(value) is expected


def test_valid_specifications_have_no_warnings(fire_stopping_schema):
    result = validate_specifications(
        {
            "fire_rating_minutes": "240 mins",
            "penetration_type": "Metal pipes",
            "installation_method": "trowel applied",
        },
        fire_stopping_schema,
    )

    assert result.warnings == []
    assert result.extra == {}
    assert result.known["fire_rating_minutes"] == "240 mins"


def test_missing_required_fields(fire_stopping_schema):
    result = validate_specifications({"penetration_type": {}}, fire_stopping_schema)

    assert 'Required field "fire_rating_minutes" is missing' in result.warnings
    assert 'Required field "penetration_type" is missing' in result.warnings


def test_unknown_fields_are_kept_apart(fire_stopping_schema):
    result = validate_specifications(
        {"fire_rating_minutes": 60, "penetration_type": "Cables", "colour": "Red"},
        fire_stopping_schema,
    )

    assert result.extra == {"colour": "Red"}
    assert "colour" not in result.known
    assert result.warnings == ['Unknown field "colour" — not in Fire Stopping schema']


def test_number_and_option_checks(fire_stopping_schema):
    result = validate_specifications(
        {
            "fire_rating_minutes": "two hours",
            "penetration_type": "Cables",
            "installation_method": "Sprayed",
        },
        fire_stopping_schema,
    )

    assert 'Field "fire_rating_minutes" should be a number, got "two hours"' in result.warnings
    assert (
        'Field "installation_method" value "Sprayed" not in allowed options: '
        "Trowel applied, Push-fit, Gun applied"
    ) in result.warnings


def test_merge_into_lets_schema_fields_win():
    validated = ValidatedSpecifications(
        known={"fire_rating_minutes": 120},
        extra={"colour": "Grey"},
    )

    merged = validated.merge_into({"fire_rating_minutes": 60, "manual_note": "checked on site"})

    assert merged == {"fire_rating_minutes": 120, "colour": "Grey", "manual_note": "checked on site"}


def test_schema_round_trips_field_definitions(fire_stopping_schema):
    rebuilt = PillarSchemaSpec.from_definitions(
        fire_stopping_schema.pillar,
        fire_stopping_schema.display_name,
        fire_stopping_schema.field_definitions(),
        fire_stopping_schema.required_fields,
    )

    assert rebuilt == fire_stopping_schema
    assert rebuilt.fields["installation_method"].options == ["Trowel applied", "Push-fit", "Gun applied"]
