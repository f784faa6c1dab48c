"""Unit tests for Event system."""

import pytest

from epub_export.core.epub.events import (
    Event,
    EventBus,
    EventType,
    create_asset_event,
    create_performance_metric_event,
    create_progress_event,
    create_warning_event,
)
from epub_export.core.epub.models import ExportWarning, WarningKind


class TestEventBus:
    """Test EventBus functionality."""

    def test_subscribe_and_publish(self):
        """Subscribe to event and receive it when published."""
        bus = EventBus()
        received_events = []

        bus.subscribe(EventType.PROGRESS, received_events.append)
        bus.publish(Event(type=EventType.PROGRESS, data={"percent": 25}))

        assert len(received_events) == 1
        assert received_events[0].type == EventType.PROGRESS
        assert received_events[0].data["percent"] == 25

    def test_subscribe_multiple(self):
        """Subscribe to multiple event types with same handler."""
        bus = EventBus()
        received_events = []

        bus.subscribe_multiple([
            EventType.EXPORT_STARTED,
            EventType.EXPORT_COMPLETED,
            EventType.EXPORT_FAILED
        ], received_events.append)

        bus.publish(Event(type=EventType.EXPORT_STARTED))
        bus.publish(Event(type=EventType.EXPORT_COMPLETED))
        bus.publish(Event(type=EventType.EXPORT_FAILED))
        bus.publish(Event(type=EventType.PROGRESS))  # Not subscribed

        assert len(received_events) == 3

    def test_unsubscribe(self):
        """Unsubscribe from event type."""
        bus = EventBus()
        received_count = [0]

        def handler(event):
            received_count[0] += 1

        bus.subscribe(EventType.ASSET_MISSING, handler)
        bus.publish(Event(type=EventType.ASSET_MISSING))
        bus.unsubscribe(EventType.ASSET_MISSING, handler)
        bus.publish(Event(type=EventType.ASSET_MISSING))

        assert received_count[0] == 1

    def test_unsubscribe_unknown_callback(self):
        """Unsubscribing an unknown callback is a no-op."""
        bus = EventBus()
        bus.subscribe(EventType.PROGRESS, lambda e: None)

        bus.unsubscribe(EventType.PROGRESS, print)
        bus.unsubscribe(EventType.EXPORT_FAILED, print)

    def test_failing_listener_isolated(self):
        """A failing listener does not stop other listeners."""
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.subscribe(EventType.PROGRESS, broken)
        bus.subscribe(EventType.PROGRESS, received.append)

        bus.publish(Event(type=EventType.PROGRESS))

        assert len(received) == 1

    def test_history(self):
        """History is only recorded while enabled."""
        bus = EventBus()
        bus.publish(Event(type=EventType.PROGRESS))
        assert bus.get_history() == []

        bus.enable_history()
        bus.publish(Event(type=EventType.PROGRESS))
        bus.publish(Event(type=EventType.EXPORT_COMPLETED))
        assert [e.type for e in bus.get_history()] == [EventType.PROGRESS, EventType.EXPORT_COMPLETED]
        assert len(bus.get_events_by_type(EventType.PROGRESS)) == 1

        bus.disable_history()
        bus.publish(Event(type=EventType.PROGRESS))
        assert len(bus.get_history()) == 2

        bus.clear_history()
        assert bus.get_history() == []

    def test_history_is_a_copy(self):
        """Mutating the returned history does not affect the bus."""
        bus = EventBus()
        bus.enable_history()
        bus.publish(Event(type=EventType.PROGRESS))

        bus.get_history().clear()

        assert len(bus.get_history()) == 1


class TestEventBuilders:
    """Test convenience event builders."""

    def test_progress_event(self):
        """Progress events carry phase, percent, message and detail."""
        event = create_progress_event("resolving", 30, "Resolving image assets...", "2 chapters")

        assert event.type == EventType.PROGRESS
        assert event.data == {
            "phase": "resolving",
            "percent": 30,
            "message": "Resolving image assets...",
            "detail": "2 chapters"
        }

    def test_warning_event(self):
        """Warning events carry the warning fields."""
        warning = ExportWarning(kind=WarningKind.CACHE_MISS, chapter_id='ch-1', message="miss", marker='ILL-1')

        event = create_warning_event(warning)

        assert event.type == EventType.WARNING_RECORDED
        assert event.data == {'kind': 'cache-miss', 'chapter_id': 'ch-1', 'message': 'miss', 'marker': 'ILL-1'}

    @pytest.mark.parametrize("missing,expected", [
        (False, EventType.ASSET_RESOLVED),
        (True, EventType.ASSET_MISSING),
    ])
    def test_asset_event(self, missing, expected):
        """Asset events are typed by outcome."""
        event = create_asset_event('img-ch-1-ILL-1', 'ch-1', 'ILL-1', missing)

        assert event.type == expected
        assert event.data["marker"] == 'ILL-1'
        assert event.source == "asset_resolver"

    def test_performance_metric_event(self):
        """Metric events use the stage as source."""
        event = create_performance_metric_event("packaging", "size", 1024)

        assert event.type == EventType.PERFORMANCE_METRIC
        assert event.source == "packaging"
        assert event.data["value"] == 1024
