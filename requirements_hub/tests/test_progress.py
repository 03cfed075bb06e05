from requirements_hub.models.enums import ProgressEventType
from requirements_hub.models.schemas import ProgressEvent
from requirements_hub.services.progress import ProgressBus, ProgressReporter


class TestProgressBus:
    def test_late_subscriber_gets_history(self):
        bus = ProgressBus()
        publish = bus.callback_for("run-1")
        publish(ProgressEvent(type=ProgressEventType.START, message="Grouping 3 requirements"))

        queue = bus.subscribe("run-1")
        publish(ProgressEvent(type=ProgressEventType.SUCCESS, message="done"))

        assert queue.get_nowait().type == ProgressEventType.START
        assert queue.get_nowait().type == ProgressEventType.SUCCESS
        assert [e.message for e in bus.history("run-1")] == ["Grouping 3 requirements", "done"]

    def test_unsubscribe_and_clear(self):
        bus = ProgressBus()
        queue = bus.subscribe("run-2")
        bus.unsubscribe("run-2", queue)
        bus.emit("run-2", ProgressEvent(type=ProgressEventType.INFO, message="x"))
        assert queue.empty()
        bus.clear("run-2")
        assert bus.history("run-2") == []

    def test_singleton(self):
        assert ProgressBus.get() is ProgressBus.get()


class TestProgressReporter:
    def test_builds_events(self):
        events = []
        ProgressReporter(events.append)(ProgressEventType.PROGRESS, "Analysing 'Drift'", 2, 5)
        assert (events[0].type, events[0].step, events[0].total) == (ProgressEventType.PROGRESS, 2, 5)

    def test_without_callback(self):
        ProgressReporter()(ProgressEventType.INFO, "nobody listens")
