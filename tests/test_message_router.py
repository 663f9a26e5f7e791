from __future__ import annotations

import asyncio
import logging as py_logging

import pytest
from fakes import FakePty, run_async

from shellmux.errors import ExitCode, ShellMuxError
from shellmux.terminal import (
    Envelope,
    EventKind,
    ExitInfo,
    KillRequest,
    MessageRouter,
    ResizeRequest,
    SessionRegistry,
    SpawnRequest,
    SubscriptionHub,
    TerminalSize,
    WriteRequest,
    parse_control_message,
)
from shellmux.terminal.pty_backend import SpawnedProcess
from shellmux.terminal.session import Session


def _session(registry: SessionRegistry, process: FakePty) -> Session:
    session_id = registry.allocate()
    spawned = SpawnedProcess(process=process, command=("bash",), cwd="/tmp", size=TerminalSize(80, 30))
    session = Session(session_id, spawned, loop=asyncio.get_running_loop())
    registry.insert(session_id, session)
    return session


def test_parse_control_message_discriminates_on_op() -> None:
    assert parse_control_message({"op": "spawn", "cols": 100, "rows": 40}) == SpawnRequest(cols=100, rows=40)
    assert parse_control_message({"op": "write", "id": 1, "data": b"ls\n"}) == WriteRequest(id=1, data=b"ls\n")
    assert parse_control_message({"op": "resize", "id": 1, "cols": 90, "rows": 20}) == ResizeRequest(
        id=1, cols=90, rows=20
    )
    assert parse_control_message({"op": "kill", "id": 3, "extra": True}) == KillRequest(id=3)


def test_parse_control_message_passes_models_through() -> None:
    request = KillRequest(id=9)

    assert parse_control_message(request) is request


@pytest.mark.parametrize(
    "raw",
    [
        {"op": "explode", "id": 1},
        {"op": "write", "data": b"x"},
        {"op": "resize", "id": "one", "cols": 1, "rows": 1},
        {},
    ],
)
def test_parse_control_message_rejects_invalid_input(raw: dict[str, object]) -> None:
    with pytest.raises(ShellMuxError) as exc:
        parse_control_message(raw)

    assert exc.value.code == ExitCode.VALIDATION_ERROR


def test_spawn_request_builds_spawn_options() -> None:
    options = SpawnRequest(cols=0, rows=24, cwd="/srv").to_options()

    assert (options.cols, options.rows, options.cwd) == (0, 24, "/srv")


def test_envelope_wire_shapes() -> None:
    assert Envelope.data(1, b"hi").to_wire() == {"kind": "data", "sessionId": 1, "payload": b"hi"}
    assert Envelope.exit(2, ExitInfo(0, signal=1)).to_wire() == {
        "kind": "exit",
        "sessionId": 2,
        "payload": {"exitCode": 0, "signal": 1},
    }
    assert Envelope.error(3, "boom").to_wire() == {
        "kind": "error",
        "sessionId": 3,
        "payload": {"message": "boom"},
    }


def test_hub_delivers_only_to_matching_session_and_kind() -> None:
    hub = SubscriptionHub()
    first: list[Envelope] = []
    second_exits: list[Envelope] = []
    everything: list[Envelope] = []
    hub.subscribe(1, first.append)
    hub.subscribe(2, second_exits.append, kinds=[EventKind.EXIT])
    hub.subscribe_all(everything.append)

    hub.publish(Envelope.data(1, b"one"))
    hub.publish(Envelope.data(2, b"two"))
    hub.publish(Envelope.exit(2, ExitInfo(0)))

    assert [env.payload for env in first] == [b"one"]
    assert [env.kind for env in second_exits] == [EventKind.EXIT]
    assert [env.session_id for env in everything] == [1, 2, 2]


def test_disposed_subscription_receives_nothing_and_dispose_is_idempotent() -> None:
    hub = SubscriptionHub()
    received: list[Envelope] = []
    subscription = hub.subscribe(1, received.append)

    subscription.dispose()
    subscription.dispose()
    hub.publish(Envelope.data(1, b"late"))

    assert received == []
    assert not subscription.active
    assert hub.subscriber_count(1) == 0


def test_subscription_context_manager_disposes() -> None:
    hub = SubscriptionHub()
    received: list[Envelope] = []

    with hub.subscribe(5, received.append) as subscription:
        hub.publish(Envelope.data(5, b"a"))
    hub.publish(Envelope.data(5, b"b"))

    assert [env.payload for env in received] == [b"a"]
    assert not subscription.active


def test_listener_may_dispose_itself_during_publish() -> None:
    hub = SubscriptionHub()
    received: list[bytes] = []

    def once(envelope: Envelope) -> None:
        received.append(envelope.payload)  # type: ignore[arg-type]
        subscription.dispose()

    subscription = hub.subscribe(1, once)
    hub.publish(Envelope.data(1, b"first"))
    hub.publish(Envelope.data(1, b"second"))

    assert received == [b"first"]


def test_failing_listener_does_not_starve_others(caplog: pytest.LogCaptureFixture) -> None:
    hub = SubscriptionHub()
    received: list[Envelope] = []

    def broken(envelope: Envelope) -> None:
        raise RuntimeError("listener bug")

    hub.subscribe(1, broken)
    hub.subscribe(1, received.append)

    with caplog.at_level(py_logging.ERROR, logger="shellmux"):
        hub.publish(Envelope.data(1, b"x"))

    assert len(received) == 1
    assert "Subscriber failed for session=1" in caplog.text


def test_dispatch_to_unknown_session_is_dropped(caplog: pytest.LogCaptureFixture) -> None:
    router = MessageRouter(SessionRegistry(), SubscriptionHub())

    with caplog.at_level(py_logging.WARNING, logger="shellmux"):
        assert router.dispatch(WriteRequest(id=42, data=b"x")) is None
        assert router.dispatch(ResizeRequest(id=42, cols=10, rows=10)) is None
        assert router.dispatch(KillRequest(id=42)) is None

    assert caplog.text.count("unknown session id=42") == 3


def test_dispatch_forwards_write_and_clamped_resize() -> None:
    async def scenario() -> None:
        registry = SessionRegistry()
        process = FakePty()
        session = _session(registry, process)
        router = MessageRouter(registry, SubscriptionHub(), default_size=TerminalSize(80, 30))

        router.dispatch(WriteRequest(id=session.id, data=b"echo hi\n"))
        router.dispatch(ResizeRequest(id=session.id, cols=100, rows=40))
        router.dispatch(ResizeRequest(id=session.id, cols=0, rows=0))

        assert process.writes == [b"echo hi\n"]
        assert process.sizes == [(40, 100), (30, 80)]
        assert session.size == TerminalSize(80, 30)

    run_async(scenario)


def test_write_failure_is_reported_through_failure_handler() -> None:
    async def scenario() -> None:
        registry = SessionRegistry()
        process = FakePty()
        process.fail_writes = True
        session = _session(registry, process)
        failures: list[tuple[int, str]] = []
        router = MessageRouter(
            registry,
            SubscriptionHub(),
            on_failure=lambda failed, message: failures.append((failed.id, message)),
        )

        router.dispatch(WriteRequest(id=session.id, data=b"x"))

        assert len(failures) == 1
        assert failures[0][0] == session.id
        assert failures[0][1].startswith("Failed to write to terminal:")

    run_async(scenario)


def test_resize_failure_is_logged_only(caplog: pytest.LogCaptureFixture) -> None:
    async def scenario() -> None:
        registry = SessionRegistry()
        process = FakePty()
        process.fail_resize = True
        session = _session(registry, process)
        failures: list[str] = []
        router = MessageRouter(registry, SubscriptionHub(), on_failure=lambda _s, msg: failures.append(msg))

        with caplog.at_level(py_logging.ERROR, logger="shellmux"):
            router.dispatch(ResizeRequest(id=session.id, cols=120, rows=50))

        assert failures == []
        assert session.size == TerminalSize(120, 50)
        assert "Error resizing session" in caplog.text

    run_async(scenario)


def test_kill_returns_the_closed_future() -> None:
    async def scenario() -> None:
        registry = SessionRegistry()
        process = FakePty(kill_exits=False)
        session = _session(registry, process)
        router = MessageRouter(registry, SubscriptionHub())

        future = router.dispatch(KillRequest(id=session.id))

        assert future is session.closed
        assert session.kill_requested
        assert len(process.kills) == 1
        # Removal only happens when the exit is processed.
        assert registry.get(session.id) is session

    run_async(scenario)


def test_write_failure_on_exiting_session_is_dropped() -> None:
    async def scenario() -> None:
        registry = SessionRegistry()
        process = FakePty()
        process.fail_writes = True
        session = _session(registry, process)
        session.draining = True
        failures: list[str] = []
        router = MessageRouter(registry, SubscriptionHub(), on_failure=lambda _s, msg: failures.append(msg))

        router.dispatch(WriteRequest(id=session.id, data=b"x"))

        assert failures == []
        assert registry.get(session.id) is session

    run_async(scenario)


def test_router_publish_reaches_scoped_subscribers() -> None:
    router = MessageRouter(SessionRegistry(), SubscriptionHub())
    received: list[Envelope] = []
    router.subscribe(4, received.append)

    router.publish(Envelope.data(4, b"hi"))
    router.publish(Envelope.data(5, b"other"))

    assert [env.payload for env in received] == [b"hi"]
