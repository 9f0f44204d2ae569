"""Tests for the event emitter."""

from imu_gestures.events import EventEmitter


class TestEventEmitter:
    def test_emit_reaches_subscribers_in_order(self):
        emitter = EventEmitter()
        seen = []
        emitter.on("gesture", lambda p: seen.append(("a", p)))
        emitter.on("gesture", lambda p: seen.append(("b", p)))
        emitter.emit("gesture", 1)
        assert seen == [("a", 1), ("b", 1)]

    def test_unsubscribe(self):
        emitter = EventEmitter()
        seen = []
        unsubscribe = emitter.on("gesture", seen.append)
        unsubscribe()
        emitter.emit("gesture", 1)
        assert seen == []
        assert emitter.listener_count("gesture") == 0

    def test_same_listener_once(self):
        emitter = EventEmitter()
        seen = []
        emitter.on("x", seen.append)
        emitter.on("x", seen.append)
        emitter.emit("x", 1)
        assert seen == [1]

    def test_failing_listener_isolated(self):
        emitter = EventEmitter()
        seen = []

        def broken(_):
            raise ValueError("boom")

        emitter.on("x", broken)
        emitter.on("x", seen.append)
        emitter.emit("x", 2)
        assert seen == [2]

    def test_unsubscribe_during_emit(self):
        emitter = EventEmitter()
        seen = []

        def once(payload):
            seen.append(payload)
            emitter.off("x", once)

        emitter.on("x", once)
        emitter.emit("x", 1)
        emitter.emit("x", 2)
        assert seen == [1]

    def test_off_unknown_is_noop(self):
        emitter = EventEmitter()
        emitter.off("nothing", print)

    def test_remove_all(self):
        emitter = EventEmitter()
        emitter.on("a", print)
        emitter.on("b", print)
        emitter.remove_all_listeners("a")
        assert emitter.listener_count("a") == 0
        assert emitter.listener_count("b") == 1
        emitter.remove_all_listeners()
        assert emitter.listener_count("b") == 0
