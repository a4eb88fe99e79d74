"""
Message templates with a fixed ``{{variable}}`` vocabulary per message kind.

Stored program templates may only reference the variables listed for their
kind; anything else is rejected instead of being sent half-rendered.
"""
from __future__ import annotations

import re

from sqlalchemy.orm import Session

from loyalty_core.models.message_template import MessageTemplate
from loyalty_core.services.errors import ValidationError


TEMPLATE_VARIABLES: dict[str, tuple[str, ...]] = {
    "membership_reminder": ("name", "plan", "end_date", "days_remaining", "tenant", "program"),
    "reactivation": ("name", "months", "offer", "tenant", "program"),
    "tokens_earned": ("name", "tokens", "reason", "balance", "tokens_name", "tokens_name_plural"),
    "redemption": ("name", "reward", "code", "valid_until"),
}

DEFAULT_TEMPLATES: dict[str, str] = {
    "membership_reminder": (
        "Hi {{name}}, your {{plan}} membership expires in {{days_remaining}} days ({{end_date}}). "
        "Renew it to keep enjoying your exclusive benefits."
    ),
    "reactivation": "Hi {{name}}, we miss you. It has been {{months}} months since your last visit. {{offer}}",
    "tokens_earned": "{{name}}, you earned {{tokens}} {{tokens_name_plural}}. {{reason}}. Your balance is {{balance}} {{tokens_name_plural}}.",
    "redemption": '{{name}}, you redeemed "{{reward}}". Your code is {{code}}, valid until {{valid_until}}.',
}

_PLACEHOLDER = re.compile(r"{{\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*}}")


def placeholders(template: str) -> set[str]:
    return set(_PLACEHOLDER.findall(template or ""))


def validate_template(message_type: str, template: str) -> None:
    if message_type not in TEMPLATE_VARIABLES:
        raise ValidationError(f"Unknown message type: {message_type}")
    if not template or not template.strip():
        raise ValidationError("Template content is required")

    unknown = placeholders(template) - set(TEMPLATE_VARIABLES[message_type])
    if unknown:
        raise ValidationError(
            f"Template for {message_type} uses unknown variables: {', '.join(sorted(unknown))}"
        )


def render(message_type: str, template: str | None, variables: dict) -> str:
    template = template or DEFAULT_TEMPLATES[message_type]
    validate_template(message_type, template)

    missing = [k for k in TEMPLATE_VARIABLES[message_type] if k not in variables]
    if missing:
        raise ValidationError(f"Missing variables for {message_type}: {', '.join(missing)}")

    rendered = _PLACEHOLDER.sub(lambda m: str(variables[m.group(1)]), template)
    return " ".join(rendered.split())


def first_name(full_name: str | None) -> str:
    parts = (full_name or "").split()
    return parts[0] if parts else "there"


def format_date(value) -> str:
    # "March 5", the renderer has no locale of its own
    return f"{value.strftime('%B')} {value.day}"


def get_program_template(db: Session, program_id, message_type: str) -> str | None:
    row = (
        db.query(MessageTemplate.template_content)
        .filter(MessageTemplate.program_id == program_id)
        .filter(MessageTemplate.message_type == message_type)
        .filter(MessageTemplate.is_active.is_(True))
        .first()
    )
    return row[0] if row else None
