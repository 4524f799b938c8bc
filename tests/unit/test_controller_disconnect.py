from ac_remote_core.events import ConnectionDropped
from ac_remote_core.types import ConnectionState
from tests.helpers.util import bring_up, go_online


def test_disconnect_from_fully_connected(controller, transport, recorder, config):
    go_online(controller, transport)
    controller.disconnect()
    assert transport.unsubscribe_calls == [config.status_topic, config.ready_topic]
    assert transport.disconnects == 1
    assert controller.state is ConnectionState.DISCONNECTED
    assert recorder.last == (False, False, "Disconnected")
    assert controller.is_broker_connected() is False
    assert controller.is_fully_connected() is False


def test_disconnect_while_awaiting_cancels_watchdog(controller, transport, timers, recorder):
    bring_up(controller, transport)
    timer = timers.latest
    controller.disconnect()
    assert timer.cancelled
    n = len(recorder.calls)
    timer.fire()
    assert controller.state is ConnectionState.DISCONNECTED
    assert len(recorder.calls) == n


def test_disconnect_when_idle_is_noop(controller, transport, recorder):
    controller.disconnect()
    assert recorder.calls == []
    assert transport.disconnects == 0
    assert controller.state is ConnectionState.IDLE


def test_second_disconnect_is_noop(controller, transport, recorder):
    go_online(controller, transport)
    controller.disconnect()
    n = len(recorder.calls)
    controller.disconnect()
    assert len(recorder.calls) == n
    assert transport.disconnects == 1


def test_late_drop_after_disconnect_is_silent(controller, transport, recorder):
    go_online(controller, transport)
    controller.disconnect()
    n = len(recorder.calls)
    transport.emit(ConnectionDropped("client requested", clean=True))
    assert len(recorder.calls) == n
    assert controller.state is ConnectionState.DISCONNECTED


def test_unclean_loss_reports_connection_lost(controller, transport, timers, recorder):
    bring_up(controller, transport)
    timer = timers.latest
    transport.drop("keepalive timeout")
    assert controller.state is ConnectionState.DISCONNECTED
    assert recorder.last == (False, False, "Connection Lost")
    assert timer.cancelled


def test_clean_close_from_broker_reports_disconnected(controller, transport, recorder):
    go_online(controller, transport)
    transport.emit(ConnectionDropped("normal disconnection", clean=True))
    assert recorder.last == (False, False, "Disconnected")


def test_disconnect_from_connection_error(controller, transport, recorder):
    controller.connect()
    transport.reject("server_unavailable")
    controller.disconnect()
    assert controller.state is ConnectionState.DISCONNECTED
    assert recorder.last == (False, False, "Disconnected")
    assert transport.unsubscribe_calls == []


def test_unsubscribe_and_teardown_errors_are_tolerated(controller, transport, recorder, monkeypatch):
    go_online(controller, transport)

    def boom(topic):
        raise OSError("socket closed")

    monkeypatch.setattr(transport, "unsubscribe", boom)
    transport.fail_disconnect = OSError("already closed")
    controller.disconnect()
    assert controller.state is ConnectionState.DISCONNECTED
    assert recorder.last == (False, False, "Disconnected")


def test_connect_after_disconnect_starts_new_session(controller, transport, recorder):
    go_online(controller, transport)
    controller.disconnect()
    controller.connect()
    assert controller.state is ConnectionState.CONNECTING
    assert len(transport.wills) == 2
    transport.accept()
    assert recorder.last == (True, False, "Awaiting Device")


def test_disconnect_after_loss_stops_transport_reconnect(controller, transport, recorder):
    bring_up(controller, transport)
    transport.drop("keepalive timeout")
    before = transport.disconnects
    controller.disconnect()
    assert transport.disconnects - before == 1
    assert recorder.last == (False, False, "Disconnected")

    # transport-level reconnect completing afterwards must not resume
    transport.accept()
    assert controller.state is ConnectionState.DISCONNECTED
    assert controller.is_broker_connected() is False
    assert recorder.last == (False, False, "Disconnected")
    assert transport.disconnects - before == 2
