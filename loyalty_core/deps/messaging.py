from loyalty_core.services.personalization import PersonalizationClient


def get_personalizer() -> PersonalizationClient:
    # unconfigured clients hand back the rendered template untouched
    return PersonalizationClient.from_env()
