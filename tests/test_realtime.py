"""
Realtime change bus tests — filtering, isolation, live list, alert feed.
"""

from app.services.realtime import (
    ChangeBus,
    ChangeEvent,
    LiveNoticeList,
    NoticeAlertFeed,
    publish_change,
)


def _update(notice_id, status, old_status="pending", priority="normal", title="Exam timetable"):
    return ChangeEvent(
        "notices", "UPDATE",
        new={"id": notice_id, "status": status, "priority": priority, "title": title},
        old={"id": notice_id, "status": old_status},
    )


class TestChangeBus:
    def test_event_filter(self):
        bus = ChangeBus()
        inserts, everything = [], []
        bus.subscribe("notices", "INSERT", inserts.append)
        bus.subscribe("notices", "*", everything.append)
        bus.publish(ChangeEvent("notices", "INSERT", new={"id": 1}))
        bus.publish(ChangeEvent("notices", "DELETE", old={"id": 1}))
        assert [c.event for c in inserts] == ["INSERT"]
        assert [c.event for c in everything] == ["INSERT", "DELETE"]

    def test_table_filter(self):
        bus = ChangeBus()
        seen = []
        bus.subscribe("notices", "*", seen.append)
        bus.publish(ChangeEvent("auth", "SIGNED_OUT", old={"user_id": 1}))
        assert seen == []

    def test_where_filter_on_new_row(self):
        bus = ChangeBus()
        seen = []
        bus.subscribe("notices", "UPDATE", seen.append, where={"status": "approved"})
        bus.publish(_update(1, "rejected"))
        bus.publish(_update(2, "approved"))
        assert [c.new["id"] for c in seen] == [2]

    def test_unsubscribe(self):
        bus = ChangeBus()
        seen = []
        unsubscribe = bus.subscribe("notices", "*", seen.append)
        assert bus.subscriber_count == 1
        unsubscribe()
        bus.publish(ChangeEvent("notices", "INSERT", new={"id": 1}))
        assert seen == []
        assert bus.subscriber_count == 0

    def test_failing_subscriber_does_not_block_others(self):
        bus = ChangeBus()
        seen = []

        def broken(change):
            raise RuntimeError("subscriber bug")

        bus.subscribe("notices", "*", broken)
        bus.subscribe("notices", "*", seen.append)
        delivered = bus.publish(ChangeEvent("notices", "INSERT", new={"id": 1}))
        assert len(seen) == 1
        assert delivered == 1

    def test_publish_change_uses_app_bus(self, app):
        seen = []
        bus = app.extensions["change_bus"]
        unsubscribe = bus.subscribe("auth", "SIGNED_OUT", seen.append)
        try:
            publish_change("auth", "SIGNED_OUT", old={"user_id": 5})
        finally:
            unsubscribe()
        assert seen[0].old == {"user_id": 5}


class TestLiveNoticeList:
    def test_refetches_on_every_change(self):
        bus = ChangeBus()
        data = [{"id": 1}]
        live = LiveNoticeList(bus, lambda: list(data))
        assert live.items == [{"id": 1}]

        data.append({"id": 2})
        bus.publish(ChangeEvent("notices", "INSERT", new={"id": 2}))
        assert live.items == [{"id": 1}, {"id": 2}]

        # Duplicate delivery converges on the same list
        bus.publish(ChangeEvent("notices", "INSERT", new={"id": 2}))
        assert live.items == [{"id": 1}, {"id": 2}]
        assert live.refresh_count == 3

    def test_close_stops_refreshing(self):
        bus = ChangeBus()
        live = LiveNoticeList(bus, lambda: [])
        live.close()
        bus.publish(ChangeEvent("notices", "INSERT", new={"id": 1}))
        assert live.refresh_count == 1


class TestNoticeAlertFeed:
    def test_approval_raises_silent_alert(self):
        bus = ChangeBus()
        feed = NoticeAlertFeed(bus)
        bus.publish(_update(7, "approved"))
        (alert,) = feed.since(0)
        assert alert["title"] == "New Notice Published"
        assert alert["body"] == "Exam timetable"
        assert alert["tag"] == "notice-7"
        assert alert["silent"] is True
        assert alert["require_interaction"] is False

    def test_urgent_alert_requires_interaction(self):
        bus = ChangeBus()
        feed = NoticeAlertFeed(bus)
        bus.publish(_update(8, "approved", priority="urgent"))
        (alert,) = feed.since(0)
        assert alert["require_interaction"] is True
        assert alert["silent"] is False

    def test_rejection_and_insert_raise_nothing(self):
        bus = ChangeBus()
        feed = NoticeAlertFeed(bus)
        bus.publish(_update(9, "rejected"))
        bus.publish(ChangeEvent("notices", "INSERT", new={"id": 10, "status": "pending"}))
        assert feed.since(0) == []

    def test_already_approved_row_not_realerted(self):
        bus = ChangeBus()
        feed = NoticeAlertFeed(bus)
        bus.publish(_update(11, "approved", old_status="approved"))
        assert feed.since(0) == []

    def test_since_returns_newer_alerts_only(self):
        bus = ChangeBus()
        received = []
        feed = NoticeAlertFeed(bus, on_alert=received.append)
        bus.publish(_update(1, "approved"))
        bus.publish(_update(2, "approved"))
        first_id = feed.since(0)[0]["id"]
        assert [a["notice_id"] for a in feed.since(first_id)] == [2]
        assert len(received) == 2
