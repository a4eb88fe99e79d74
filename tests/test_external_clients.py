import httpx

from loyalty_core.services.delivery import DeliveryClient
from loyalty_core.services.personalization import PersonalizationClient


SHORT = "Hi Ana, we miss you."


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _personalizer(handler, **kw):
    return PersonalizationClient(url="https://ai.example.test/v1/chat/completions", api_key="k", http_client=_client(handler), **kw)


def test_personalization_happy_path():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"choices": [{"message": {"content": '"Ana! We really miss you at Sonrisa."'}}]})

    result = _personalizer(handler).personalize(SHORT, tenant_name="Sonrisa Dental", message_kind="reactivation")

    assert result.personalized is True
    assert result.text == "Ana! We really miss you at Sonrisa."
    assert seen["auth"] == "Bearer k"


def test_personalization_timeout_falls_back_to_template():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    result = _personalizer(handler).personalize(SHORT, tenant_name="Sonrisa", message_kind="reactivation")

    assert result.personalized is False
    assert result.text == SHORT
    assert result.fallback_reason == "timeout"


def test_personalization_server_error_falls_back_to_template():
    result = _personalizer(lambda request: httpx.Response(503)).personalize(SHORT, tenant_name="Sonrisa", message_kind="reactivation")

    assert result.text == SHORT
    assert result.fallback_reason == "http_error"


def test_personalization_malformed_body_falls_back_to_template():
    result = _personalizer(lambda request: httpx.Response(200, json={"unexpected": True})).personalize(
        SHORT, tenant_name="Sonrisa", message_kind="reactivation"
    )

    assert result.text == SHORT
    assert result.fallback_reason == "malformed_response"


def test_personalization_skipped_when_unconfigured_or_long():
    assert PersonalizationClient().personalize(SHORT, tenant_name="S", message_kind="reactivation").fallback_reason == "not_configured"

    def handler(request):
        raise AssertionError("no request expected")

    long_text = "x" * 51
    result = _personalizer(handler, min_length=50).personalize(long_text, tenant_name="S", message_kind="reactivation")
    assert result.fallback_reason == "already_personalized"
    assert result.text == long_text


def test_delivery_statuses():
    assert DeliveryClient().send(destination="+52155", text="hi", channel="whatsapp").status == "queued"

    ok = DeliveryClient(webhook_url="https://hooks.example.test/send", http_client=_client(lambda r: httpx.Response(202)))
    assert ok.send(destination="+52155", text="hi", channel="whatsapp").status == "sent"
    assert ok.send(destination=None, text="hi", channel="whatsapp").status == "failed"

    down = DeliveryClient(webhook_url="https://hooks.example.test/send", http_client=_client(lambda r: httpx.Response(500)))
    result = down.send(destination="+52155", text="hi", channel="whatsapp")
    assert result.status == "failed"
    assert result.error
