from datetime import datetime

import pytest

from loyalty_core.services import templates
from loyalty_core.services.errors import ValidationError


def test_default_reminder_renders_every_variable():
    text = templates.render(
        "membership_reminder",
        None,
        {
            "name": "Ana",
            "plan": "Gold Smile",
            "end_date": templates.format_date(datetime(2025, 3, 5)),
            "days_remaining": 7,
            "tenant": "Sonrisa Dental",
            "program": "Sonrisa Rewards",
        },
    )
    assert text.startswith("Hi Ana, your Gold Smile membership expires in 7 days (March 5).")
    assert "{{" not in text


def test_program_template_with_unknown_variable_is_rejected():
    with pytest.raises(ValidationError):
        templates.render("reactivation", "Hola {{name}}, code {{coupon}}", {"name": "Ana", "months": 6, "offer": "", "tenant": "", "program": ""})


def test_missing_variable_is_rejected():
    with pytest.raises(ValidationError):
        templates.render("reactivation", "Hola {{name}}", {"name": "Ana"})


def test_placeholders_tolerate_inner_spaces():
    assert templates.placeholders("{{ name }} and {{months}}") == {"name", "months"}


def test_first_name_fallback():
    assert templates.first_name("Ana Lopez") == "Ana"
    assert templates.first_name("") == "there"
    assert templates.first_name(None) == "there"
