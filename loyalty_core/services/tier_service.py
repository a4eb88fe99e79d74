from loyalty_core.services.errors import ValidationError


TIERS = ("bronze", "silver", "gold", "platinum")

DEFAULT_TIER_THRESHOLDS = {
    "silver": 500,
    "gold": 2000,
    "platinum": 5000,
}


def validate_thresholds(thresholds: dict | None) -> dict:
    """Return a complete threshold map, rejecting overlapping or non-monotonic boundaries."""
    if not thresholds:
        return dict(DEFAULT_TIER_THRESHOLDS)

    unknown = set(thresholds) - set(TIERS[1:])
    if unknown:
        raise ValidationError(f"Unknown tiers in thresholds: {', '.join(sorted(unknown))}")

    merged = {**DEFAULT_TIER_THRESHOLDS, **thresholds}

    previous = 0
    for tier in TIERS[1:]:
        try:
            value = int(merged[tier])
        except (TypeError, ValueError):
            raise ValidationError(f"Threshold for {tier} must be an integer")
        if value <= previous:
            raise ValidationError("Tier thresholds must be positive and strictly increasing (silver < gold < platinum)")
        merged[tier] = value
        previous = value

    return merged


def classify(total_earned, thresholds: dict | None = None) -> str:
    bounds = validate_thresholds(thresholds)
    value = int(total_earned or 0)

    tier = TIERS[0]
    for candidate in TIERS[1:]:
        if value >= bounds[candidate]:
            tier = candidate
    return tier
