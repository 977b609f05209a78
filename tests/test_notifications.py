import httpx
import pytest

from app.config import Settings
from app.services import notifications


@pytest.fixture
def use_settings(monkeypatch):
    def apply(**values):
        settings = Settings(**values)
        monkeypatch.setattr(notifications, "get_settings", lambda: settings)
        return settings
    return apply


@pytest.fixture
def mailgun(monkeypatch):
    """Route the Mailgun client through a MockTransport; returns the recorded requests."""
    requests = []
    responses = []
    real_client = httpx.Client

    def handler(request):
        requests.append(request)
        return responses.pop(0) if responses else httpx.Response(200, json={"id": "<msg@mailgun>"})

    monkeypatch.setattr(httpx, "Client", lambda **kw: real_client(transport=httpx.MockTransport(handler)))
    return requests, responses


def test_unconfigured_email_is_not_sent(use_settings):
    use_settings(mailgun_api_key="", mailgun_domain="", sendgrid_api_key="")

    assert notifications.email_configured() is False
    assert notifications.send_welcome_email("a@example.com", "A & B", "a-b", "https://link") is False


def test_welcome_email_via_mailgun_escapes_names(use_settings, mailgun):
    use_settings(mailgun_api_key="key-1", mailgun_domain="mg.example.test", mailgun_from_email="hello@other.test")
    requests, _ = mailgun

    assert notifications.send_welcome_email(
        "a@example.com", "<Alice> & Bob", "alice-bob", "https://auth.example.test/verify?token=t&type=magiclink",
    ) is True

    (request,) = requests
    assert str(request.url) == "https://api.mailgun.net/v3/mg.example.test/messages"
    body = request.content.decode()
    assert "noreply%40mg.example.test" in body
    assert "%3CAlice%3E" not in body.split("html=")[1]


def test_mailgun_retries_eu_endpoint_on_401(use_settings, mailgun):
    use_settings(mailgun_api_key="key-1", mailgun_domain="mg.example.test")
    requests, responses = mailgun
    responses.append(httpx.Response(401, text="Forbidden"))

    assert notifications.send_email("a@example.com", "Subject", "<p>hi</p>") is True
    assert [r.url.host for r in requests] == ["api.mailgun.net", "api.eu.mailgun.net"]


def test_mailgun_failure_returns_false(use_settings, mailgun):
    use_settings(mailgun_api_key="key-1", mailgun_domain="mg.example.test", mailgun_base_url="https://api.eu.mailgun.net")
    _, responses = mailgun
    responses.append(httpx.Response(500, text="boom"))

    assert notifications.send_email("a@example.com", "Subject", "<p>hi</p>") is False
