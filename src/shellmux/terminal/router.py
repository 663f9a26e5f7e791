"""Session-scoped event subscriptions and control-message dispatch."""

from __future__ import annotations

import asyncio
import logging as py_logging
from collections.abc import Callable, Iterable

from shellmux.logging import log_session_event
from shellmux.terminal.messages import (
    Envelope,
    KillRequest,
    ResizeRequest,
    SessionControl,
    WriteRequest,
)
from shellmux.terminal.models import ALL_EVENT_KINDS, EventKind, TerminalSize
from shellmux.terminal.registry import SessionRegistry
from shellmux.terminal.session import Session

logger = py_logging.getLogger(__name__)

Listener = Callable[[Envelope], None]
FailureHandler = Callable[[Session, str], None]


class Subscription:
    """Disposable handle returned by ``subscribe``; safe to dispose repeatedly."""

    def __init__(
        self,
        hub: SubscriptionHub,
        session_id: int | None,
        listener: Listener,
        kinds: frozenset[EventKind],
    ) -> None:
        self._hub: SubscriptionHub | None = hub
        self.session_id = session_id
        self.listener = listener
        self.kinds = kinds

    @property
    def active(self) -> bool:
        return self._hub is not None

    def dispose(self) -> None:
        hub, self._hub = self._hub, None
        if hub is not None:
            hub.release(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


class SubscriptionHub:
    def __init__(self) -> None:
        self._scoped: dict[int, list[Subscription]] = {}
        self._global: list[Subscription] = []

    def subscribe(
        self,
        session_id: int,
        listener: Listener,
        kinds: Iterable[EventKind] = ALL_EVENT_KINDS,
    ) -> Subscription:
        subscription = Subscription(self, session_id, listener, frozenset(kinds))
        self._scoped.setdefault(session_id, []).append(subscription)
        return subscription

    def subscribe_all(self, listener: Listener, kinds: Iterable[EventKind] = ALL_EVENT_KINDS) -> Subscription:
        subscription = Subscription(self, None, listener, frozenset(kinds))
        self._global.append(subscription)
        return subscription

    def release(self, subscription: Subscription) -> None:
        if subscription.session_id is None:
            bucket = self._global
        else:
            bucket = self._scoped.get(subscription.session_id, [])
        if subscription in bucket:
            bucket.remove(subscription)
        if subscription.session_id is not None and not bucket:
            self._scoped.pop(subscription.session_id, None)

    def subscriber_count(self, session_id: int) -> int:
        return len(self._scoped.get(session_id, ()))

    def publish(self, envelope: Envelope) -> None:
        targets = [*self._scoped.get(envelope.session_id, ()), *self._global]
        for subscription in targets:
            if not subscription.active or envelope.kind not in subscription.kinds:
                continue
            try:
                subscription.listener(envelope)
            except Exception:
                logger.exception(
                    "Subscriber failed for session=%s kind=%s",
                    envelope.session_id,
                    envelope.kind.value,
                )


class MessageRouter:
    """Routes inbound write/resize/kill to sessions and outbound events to subscribers.

    Unknown session ids are expected races (the UI may still hold an id whose
    exit has not been processed) and are logged and dropped, never raised.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        hub: SubscriptionHub,
        *,
        default_size: TerminalSize | None = None,
        on_failure: FailureHandler | None = None,
    ) -> None:
        self._registry = registry
        self._hub = hub
        self._default_size = default_size or TerminalSize.clamp(None, None)
        self._on_failure = on_failure

    def subscribe(
        self,
        session_id: int,
        listener: Listener,
        kinds: Iterable[EventKind] = ALL_EVENT_KINDS,
    ) -> Subscription:
        return self._hub.subscribe(session_id, listener, kinds)

    def subscribe_all(self, listener: Listener, kinds: Iterable[EventKind] = ALL_EVENT_KINDS) -> Subscription:
        return self._hub.subscribe_all(listener, kinds)

    def publish(self, envelope: Envelope) -> None:
        self._hub.publish(envelope)

    def dispatch(self, message: SessionControl) -> asyncio.Future[Envelope] | None:
        session = self._registry.get(message.id)
        if session is None:
            logger.warning("Dropping '%s' for unknown session id=%s", message.op, message.id)
            return None

        if isinstance(message, WriteRequest):
            self._write(session, message.data)
        elif isinstance(message, ResizeRequest):
            self._resize(session, message.cols, message.rows)
        elif isinstance(message, KillRequest):
            log_session_event(logger, session.id, "kill", "Kill signal requested.")
            return session.terminate()
        return None

    def _write(self, session: Session, data: bytes) -> None:
        logger.debug("Forwarding %s bytes to session id=%s", len(data), session.id)
        try:
            session.write(data)
        except Exception as exc:
            if session.draining:
                # The shell already ended; its exit event is on the way.
                logger.debug("Dropping write to exiting session id=%s: %s", session.id, exc)
                return
            logger.error("Error writing to session id=%s: %s", session.id, exc)
            if self._on_failure is not None:
                self._on_failure(session, f"Failed to write to terminal: {exc}")

    def _resize(self, session: Session, cols: int, rows: int) -> None:
        size = TerminalSize.clamp(
            cols,
            rows,
            default_cols=self._default_size.cols,
            default_rows=self._default_size.rows,
        )
        logger.debug("Resizing session id=%s cols=%s rows=%s", session.id, size.cols, size.rows)
        try:
            session.resize(size)
        except Exception as exc:
            logger.error("Error resizing session id=%s: %s", session.id, exc)
