"""Tests for boxfinder.events.Observable."""

from boxfinder.events import Observable


# ============================================================================
# Observable
# ============================================================================


class TestSubscribe:
    def test_subscribe_replays_current_value(self):
        obs = Observable(5)
        seen = []
        obs.subscribe(seen.append)
        assert seen == [5]

    def test_unsubscribe_stops_notifications(self):
        obs = Observable(0)
        seen = []
        unsubscribe = obs.subscribe(seen.append)
        unsubscribe()
        obs.publish(1)
        assert seen == [0]
        assert obs.listener_count == 0

    def test_unsubscribe_twice_is_safe(self):
        obs = Observable(0)
        unsubscribe = obs.subscribe(lambda v: None)
        unsubscribe()
        unsubscribe()


class TestPublish:
    def test_publish_notifies_every_time_by_default(self):
        obs = Observable(0)
        seen = []
        obs.subscribe(seen.append)
        obs.publish(0)
        obs.publish(0)
        assert seen == [0, 0, 0]

    def test_distinct_only_notifies_on_change(self):
        obs = Observable(True, distinct=True)
        seen = []
        obs.subscribe(seen.append)
        assert obs.publish(True) is False
        assert obs.publish(False) is True
        obs.publish(False)
        obs.publish(True)
        assert seen == [True, False, True]

    def test_set_does_not_notify(self):
        """set() changes the value silently."""
        obs = Observable(0)
        seen = []
        obs.subscribe(seen.append)
        obs.set(3)
        assert obs.value == 3
        assert seen == [0]

    def test_failing_listener_does_not_block_others(self):
        """A raising listener is logged and skipped."""
        obs = Observable(0)
        seen = []

        def broken(value):
            if value:
                raise RuntimeError("boom")

        obs.subscribe(broken)
        obs.subscribe(seen.append)
        obs.publish(1)
        assert seen == [0, 1]

    def test_listener_may_unsubscribe_during_publish(self):
        obs = Observable(0)
        seen = []
        holder = {}

        def once(value):
            seen.append(value)
            if value == 1:
                holder["unsub"]()

        holder["unsub"] = obs.subscribe(once)
        obs.publish(1)
        obs.publish(2)
        assert seen == [0, 1]

    def test_clear_drops_listeners(self):
        obs = Observable(0)
        obs.subscribe(lambda v: None)
        obs.clear()
        assert obs.listener_count == 0
