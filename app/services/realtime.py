"""
Realtime change bus — in-process publish/subscribe for table changes.

Subscribers register per table with an event filter ("*", "INSERT",
"UPDATE", "DELETE", or an auth event such as "SIGNED_OUT") and an
optional column-equality filter on the new row. Delivery is
fire-and-forget: a failing callback is logged and never reaches the
publisher.

Events carry no payload the consumer should merge. ``LiveNoticeList``
re-fetches its whole list on every event, so duplicated or out-of-order
events converge on the same state.

Usage:
    from app.services.realtime import get_change_bus

    bus = get_change_bus()
    unsubscribe = bus.subscribe("notices", "UPDATE", on_change,
                                where={"status": "approved"})
    ...
    unsubscribe()

Threading: the subscriber registry is guarded by a lock; callbacks run on
the publisher's thread after the lock is released.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable

from flask import current_app

logger = logging.getLogger(__name__)

WILDCARD = "*"


@dataclass
class ChangeEvent:
    table: str
    event: str
    new: dict | None = None
    old: dict | None = None
    meta: dict = field(default_factory=dict)


@dataclass
class _Subscription:
    id: int
    table: str
    event_filter: str
    callback: Callable[[ChangeEvent], Any]
    where: dict | None = None

    def matches(self, change: ChangeEvent) -> bool:
        if self.table != change.table:
            return False
        if self.event_filter != WILDCARD and self.event_filter != change.event:
            return False
        if self.where:
            row = change.new or {}
            return all(row.get(k) == v for k, v in self.where.items())
        return True


class ChangeBus:
    """Process-local change notification bus."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subs: dict[int, _Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        table: str,
        event_filter: str,
        callback: Callable[[ChangeEvent], Any],
        *,
        where: dict | None = None,
    ) -> Callable[[], None]:
        """Register a callback; returns a function that unsubscribes it."""
        with self._lock:
            sub_id = next(self._ids)
            self._subs[sub_id] = _Subscription(sub_id, table, event_filter, callback, where)

        def unsubscribe() -> None:
            with self._lock:
                self._subs.pop(sub_id, None)

        return unsubscribe

    def publish(self, change: ChangeEvent) -> int:
        """Deliver a change to every matching subscriber; returns delivery count."""
        with self._lock:
            targets = [s for s in self._subs.values() if s.matches(change)]
        delivered = 0
        for sub in targets:
            try:
                sub.callback(change)
                delivered += 1
            except Exception:
                logger.exception(
                    "Realtime subscriber %s failed on %s %s", sub.id, change.table, change.event,
                )
        return delivered

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subs)


def get_change_bus() -> ChangeBus:
    """Change bus attached to the current app."""
    bus = current_app.extensions.get("change_bus")
    if bus is None:
        bus = ChangeBus()
        current_app.extensions["change_bus"] = bus
    return bus


def publish_change(table: str, event: str, *, new=None, old=None, **meta) -> int:
    """Publish on the current app's bus. Never raises."""
    try:
        return get_change_bus().publish(ChangeEvent(table, event, new=new, old=old, meta=meta))
    except Exception:
        logger.exception("Realtime publish failed: %s %s", table, event)
        return 0


# ═══════════════════════════════════════════════════════════════
# Consumers
# ═══════════════════════════════════════════════════════════════

class LiveNoticeList:
    """A notice list kept current by full re-fetch on every change.

    Args:
        bus: ChangeBus to subscribe to.
        fetch: zero-argument callable returning the full list.
    """

    def __init__(self, bus: ChangeBus, fetch: Callable[[], list]) -> None:
        self._fetch = fetch
        self._lock = threading.Lock()
        self.items: list = []
        self.refresh_count = 0
        self.refresh()
        self._unsubscribe = bus.subscribe("notices", WILDCARD, self._on_change)

    def _on_change(self, change: ChangeEvent) -> None:
        self.refresh()

    def refresh(self) -> list:
        items = list(self._fetch())
        with self._lock:
            self.items = items
            self.refresh_count += 1
        return items

    def close(self) -> None:
        self._unsubscribe()


class NoticeAlertFeed:
    """Turns newly approved notices into client notification payloads.

    Urgent notices ask the client to keep the alert on screen; everything
    else is delivered silently.
    """

    def __init__(self, bus: ChangeBus, maxlen: int = 100,
                 on_alert: Callable[[dict], Any] | None = None) -> None:
        self.alerts: deque[dict] = deque(maxlen=maxlen)
        self._on_alert = on_alert
        self._seq = itertools.count(1)
        self._unsubscribe = bus.subscribe(
            "notices", "UPDATE", self._on_change, where={"status": "approved"},
        )

    def _on_change(self, change: ChangeEvent) -> None:
        notice = change.new or {}
        if (change.old or {}).get("status") == "approved":
            return
        urgent = notice.get("priority") == "urgent"
        alert = {
            "id": next(self._seq),
            "title": "New Notice Published",
            "body": notice.get("title", ""),
            "tag": f"notice-{notice.get('id')}",
            "notice_id": notice.get("id"),
            "require_interaction": urgent,
            "silent": not urgent,
        }
        self.alerts.append(alert)
        logger.info("Notice %s published; alert queued", notice.get("id"))
        if self._on_alert is not None:
            self._on_alert(alert)

    def since(self, alert_id: int = 0) -> list[dict]:
        return [a for a in self.alerts if a["id"] > alert_id]

    def close(self) -> None:
        self._unsubscribe()
