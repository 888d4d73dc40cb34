"""Tests for NotificationRouter."""

import logging

import pytest

from smartpoll.alerts.channels import LogChannel, NotificationChannel
from smartpoll.alerts.models import Alert, AlertSeverity, AlertType
from smartpoll.alerts.router import NotificationRouter

# -- Helpers -----------------------------------------------------------------


class FakeChannel:
    """Minimal channel implementation for testing."""

    def __init__(self, channel_name: str = "fake") -> None:
        self._name = channel_name
        self.sent: list[Alert] = []

    @property
    def name(self) -> str:
        return self._name

    async def notify(self, alert: Alert) -> bool:
        self.sent.append(alert)
        return True


class FailChannel(FakeChannel):
    """Channel that always rejects the alert."""

    async def notify(self, alert: Alert) -> bool:
        return False


class RaisingChannel(FakeChannel):
    async def notify(self, alert: Alert) -> bool:
        raise RuntimeError("transport exploded")


def _alert(severity: AlertSeverity = AlertSeverity.CRITICAL) -> Alert:
    return Alert(
        type=AlertType.ERROR,
        severity=severity,
        title="Circuit Breaker Activated",
        message="Polling stopped",
        task_id="t1",
    )


@pytest.fixture
def router() -> NotificationRouter:
    return NotificationRouter()


# -- Registration ------------------------------------------------------------


def test_register_and_list(router: NotificationRouter) -> None:
    ch = FakeChannel("log")
    router.register_channel(ch)
    assert router.list_channels() == ["log"]
    assert router.get_channel("log") is ch
    assert router.has_channels is True


def test_register_duplicate_raises(router: NotificationRouter) -> None:
    router.register_channel(FakeChannel("log"))
    with pytest.raises(ValueError, match="already registered"):
        router.register_channel(FakeChannel("log"))


def test_get_channel_missing_returns_none(router: NotificationRouter) -> None:
    assert router.get_channel("nonexistent") is None


def test_unregister_channel_clears_default(router: NotificationRouter) -> None:
    router.register_channel(FakeChannel("log"))
    router.set_default_channel("log")
    assert router.unregister_channel("log") is True
    assert router.unregister_channel("log") is False
    assert router.default_channel_name == ""
    assert router.has_channels is False


def test_fake_channels_satisfy_protocol() -> None:
    assert isinstance(FakeChannel(), NotificationChannel)
    assert isinstance(LogChannel(), NotificationChannel)


# -- Default channel ---------------------------------------------------------


def test_set_default_channel(router: NotificationRouter) -> None:
    router.register_channel(FakeChannel("webhook"))
    router.set_default_channel("webhook")
    assert router.default_channel_name == "webhook"


def test_set_default_unregistered_raises(router: NotificationRouter) -> None:
    with pytest.raises(KeyError, match="not registered"):
        router.set_default_channel("missing")


# -- Send dispatch -----------------------------------------------------------


async def test_send_via_default_channel(router: NotificationRouter) -> None:
    ch = FakeChannel("webhook")
    router.register_channel(ch)
    router.register_channel(FakeChannel("log"))
    router.set_default_channel("webhook")

    alert = _alert()
    assert await router.send(alert) is True
    assert ch.sent == [alert]


async def test_send_via_named_channel(router: NotificationRouter) -> None:
    log = FakeChannel("log")
    hook = FakeChannel("webhook")
    router.register_channel(log)
    router.register_channel(hook)
    router.set_default_channel("log")

    assert await router.send(_alert(), channel="webhook") is True
    assert len(hook.sent) == 1
    assert log.sent == []


async def test_send_fallback_to_only_channel(router: NotificationRouter) -> None:
    ch = FakeChannel("log")
    router.register_channel(ch)
    # No default set: falls back to the only registered channel

    assert await router.send(_alert()) is True
    assert len(ch.sent) == 1


async def test_send_no_channel_returns_false(router: NotificationRouter) -> None:
    assert await router.send(_alert()) is False


async def test_send_ambiguous_no_default_returns_false(router: NotificationRouter) -> None:
    router.register_channel(FakeChannel("a"))
    router.register_channel(FakeChannel("b"))
    # Two channels, no default set
    assert await router.send(_alert()) is False


async def test_send_rejected_returns_false(router: NotificationRouter) -> None:
    router.register_channel(FailChannel("log"))
    assert await router.send(_alert()) is False


# -- Broadcast ---------------------------------------------------------------


async def test_broadcast_reaches_every_channel(router: NotificationRouter) -> None:
    a = FakeChannel("a")
    b = FakeChannel("b")
    router.register_channel(a)
    router.register_channel(b)

    assert await router.broadcast(_alert()) == 2
    assert len(a.sent) == 1
    assert len(b.sent) == 1


async def test_broadcast_skips_failing_channels(router: NotificationRouter) -> None:
    ok = FakeChannel("ok")
    router.register_channel(RaisingChannel("boom"))
    router.register_channel(FailChannel("nope"))
    router.register_channel(ok)

    assert await router.broadcast(_alert()) == 1
    assert len(ok.sent) == 1


async def test_broadcast_without_channels(router: NotificationRouter) -> None:
    assert await router.broadcast(_alert()) == 0


# -- LogChannel --------------------------------------------------------------


async def test_log_channel_levels(caplog: pytest.LogCaptureFixture) -> None:
    channel = LogChannel("smartpoll.test_notifications")
    with caplog.at_level(logging.INFO, logger="smartpoll.test_notifications"):
        assert await channel.notify(_alert(AlertSeverity.CRITICAL)) is True
        assert await channel.notify(_alert(AlertSeverity.LOW)) is True

    levels = [r.levelno for r in caplog.records]
    assert levels == [logging.ERROR, logging.INFO]
    assert "Circuit Breaker Activated" in caplog.records[0].getMessage()
