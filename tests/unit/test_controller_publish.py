from ac_remote_core.controller import ConnectionController
from ac_remote_core.types import ConnectionState
from tests.helpers.util import bring_up, go_online, log_events


def test_publish_without_broker_fails_without_sending(controller, transport, recorder, caplog_level):
    assert controller.publish({"power": "on"}) is False
    assert transport.published == []
    assert recorder.calls == []
    assert controller.state is ConnectionState.IDLE
    assert "publish_not_connected" in log_events(caplog_level)


def test_publish_when_fully_connected(controller, transport, recorder, config):
    go_online(controller, transport)
    n = len(recorder.calls)
    assert controller.publish({"power": "on", "temp": 24}) is True
    assert transport.published == [
        (config.command_topic, '{"power":"on","temp":24}', 0, False)
    ]
    assert len(recorder.calls) == n


def test_publish_string_passes_through(controller, transport, config):
    go_online(controller, transport)
    assert controller.publish('{"mode": "cool"}') is True
    assert transport.published[-1][1] == '{"mode": "cool"}'


def test_publish_while_unconfirmed_is_best_effort(controller, transport, recorder, caplog_level):
    bring_up(controller, transport)
    assert controller.publish(["fan", 3]) is True
    assert transport.published[-1][1] == '["fan",3]'
    assert recorder.last == (True, False, "Device Unconfirmed: best-effort delivery")
    assert controller.state is ConnectionState.BROKER_CONNECTED_AWAITING_DEVICE
    assert controller.get_status().message == "Awaiting Device"
    assert "publish_unconfirmed_device" in log_events(caplog_level)


def test_publish_transport_error_is_reported(controller, transport, recorder):
    go_online(controller, transport)
    transport.fail_publish = "broker refused"
    assert controller.publish({"power": "off"}) is False
    assert recorder.last == (True, True, "Publish Failed: broker refused")
    assert controller.state is ConnectionState.FULLY_CONNECTED


def test_publish_unserialisable_payload(controller, transport, recorder):
    go_online(controller, transport)
    assert controller.publish({"when": object()}) is False
    assert transport.published == []
    assert recorder.last[2].startswith("Publish Failed: payload not JSON serialisable")


def test_publish_before_init_returns_false(config, transport, timers):
    ctl = ConnectionController(config, transport, timer_factory=timers)
    assert ctl.publish({"power": "on"}) is False
    assert transport.published == []


def test_publish_not_connected_logs_error_kind(controller, caplog_level):
    controller.publish({"power": "on"})
    rec = next(
        r.msg for r in caplog_level.records
        if isinstance(r.msg, dict) and r.msg.get("event") == "publish_not_connected"
    )
    assert rec["kind"] == "PublishNotConnected"
    assert rec["error"] == "no broker session"
