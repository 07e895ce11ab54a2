import requests

from helpdesk.services.notifications import (
    PRIORITY_HIGH,
    DispatchResult,
    LoggingDispatcher,
    NotificationIntent,
    WebhookDispatcher,
    create_dispatcher,
    dispatch_all,
)

INTENT = NotificationIntent(
    kind="crisis_alert",
    recipient_id="admin-1",
    title="Crisis ticket T00042",
    message="Immediate attention required.",
    priority=PRIORITY_HIGH,
    payload={"ticket_id": 42},
)


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, status_code=200, exc=None):
        self.status_code = status_code
        self.exc = exc
        self.posted = []

    def post(self, url, json=None, timeout=None):
        self.posted.append((url, json, timeout))
        if self.exc:
            raise self.exc
        return FakeResponse(self.status_code)


def test_webhook_posts_intent_as_json():
    session = FakeSession()
    result = WebhookDispatcher("https://notify.campus.edu/hook", timeout=3, session=session).dispatch(INTENT)

    assert result.delivered is True
    url, body, timeout = session.posted[0]
    assert url == "https://notify.campus.edu/hook"
    assert body["kind"] == "crisis_alert"
    assert body["priority"] == "high"
    assert body["payload"] == {"ticket_id": 42}
    assert timeout == 3


def test_webhook_failures_are_values():
    down = WebhookDispatcher("https://x", session=FakeSession(exc=requests.ConnectionError("refused")))
    rejected = WebhookDispatcher("https://x", session=FakeSession(status_code=502))

    assert down.dispatch(INTENT).delivered is False
    result = rejected.dispatch(INTENT)
    assert result.delivered is False
    assert "502" in result.error


def test_dispatch_all_survives_failures_and_raising_dispatchers(caplog):
    class Exploding:
        def dispatch(self, intent):
            raise ValueError("bug")

    results = dispatch_all(Exploding(), [INTENT, INTENT])
    assert [r.delivered for r in results] == [False, False]
    assert "Dropping notification crisis_alert" in caplog.text


def test_dispatch_all_returns_results_in_order():
    class Flaky:
        def __init__(self):
            self.calls = 0

        def dispatch(self, intent):
            self.calls += 1
            return DispatchResult(intent=intent, delivered=self.calls % 2 == 1, error=None)

    results = dispatch_all(Flaky(), [INTENT, INTENT, INTENT])
    assert [r.delivered for r in results] == [True, False, True]


def test_create_dispatcher_from_settings():
    from types import SimpleNamespace

    assert isinstance(create_dispatcher(SimpleNamespace(NOTIFICATION_WEBHOOK_URL=None)), LoggingDispatcher)
    webhook = create_dispatcher(
        SimpleNamespace(NOTIFICATION_WEBHOOK_URL="https://hook", NOTIFICATION_TIMEOUT_SECONDS=2.5)
    )
    assert isinstance(webhook, WebhookDispatcher)
    assert webhook.timeout == 2.5
