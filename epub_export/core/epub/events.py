"""
Event system for export pipeline observability.

Provides decoupled event publishing and subscription for monitoring
export progress and debugging.
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List
import time


class EventType(Enum):
    """Export pipeline event types."""

    # High-level events
    EXPORT_STARTED = "export_started"
    EXPORT_COMPLETED = "export_completed"
    EXPORT_FAILED = "export_failed"

    # Stage events
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    PROGRESS = "progress"

    # Asset events
    ASSET_RESOLVED = "asset_resolved"
    ASSET_MISSING = "asset_missing"

    # Data-quality events
    WARNING_RECORDED = "warning_recorded"
    XML_PARSE_FAILED = "xml_parse_failed"

    # Performance events
    PERFORMANCE_METRIC = "performance_metric"


@dataclass
class Event:
    """Export pipeline event.

    Attributes:
        type: Event type
        data: Event-specific data dictionary
        timestamp: Unix timestamp when event occurred
        source: Optional source identifier (e.g., "AssetResolutionStage")
    """
    type: EventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    source: str = "unknown"


class EventBus:
    """Central event bus for the export pipeline."""

    def __init__(self):
        """Initialize event bus."""
        self._listeners: Dict[EventType, List[Callable]] = {}
        self._history: List[Event] = []
        self._record_history = False

    def subscribe(self, event_type: EventType, callback: Callable[[Event], None]) -> None:
        """Subscribe to an event type.

        Args:
            event_type: Type of event to listen for
            callback: Function to call when event occurs (receives Event object)
        """
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        self._listeners[event_type].append(callback)

    def subscribe_multiple(
        self,
        event_types: List[EventType],
        callback: Callable[[Event], None]
    ) -> None:
        """Subscribe to multiple event types with same callback."""
        for event_type in event_types:
            self.subscribe(event_type, callback)

    def unsubscribe(self, event_type: EventType, callback: Callable) -> None:
        """Unsubscribe from an event type.

        Args:
            event_type: Event type
            callback: Previously registered callback
        """
        if event_type in self._listeners:
            try:
                self._listeners[event_type].remove(callback)
            except ValueError:
                pass  # Callback not found

    def publish(self, event: Event) -> None:
        """Publish an event to all subscribers.

        Args:
            event: Event to publish
        """
        if self._record_history:
            self._history.append(event)

        for listener in self._listeners.get(event.type, []):
            try:
                listener(event)
            except Exception as e:
                # A failing listener never breaks the export
                from epub_export.utils.unified_logger import warning
                warning(f"Event listener failed for {event.type.value}: {e}")

    def enable_history(self) -> None:
        """Enable event history recording."""
        self._record_history = True

    def disable_history(self) -> None:
        """Disable event history recording."""
        self._record_history = False

    def get_history(self) -> List[Event]:
        """Get recorded event history in chronological order."""
        return self._history.copy()

    def clear_history(self) -> None:
        """Clear event history."""
        self._history.clear()

    def get_events_by_type(self, event_type: EventType) -> List[Event]:
        """Get all events of a specific type from history."""
        return [e for e in self._history if e.type == event_type]


# === Convenience Event Builders ===

def create_progress_event(phase: str, percent: float, message: str, detail: str = None) -> Event:
    """Create progress event.

    Args:
        phase: Pipeline phase
        percent: Overall progress 0-100
        message: Short status message
        detail: Optional detail line

    Returns:
        Event object
    """
    return Event(
        type=EventType.PROGRESS,
        data={
            "phase": phase,
            "percent": percent,
            "message": message,
            "detail": detail
        },
        source="export_service"
    )


def create_warning_event(warning) -> Event:
    """Create event for a recorded ExportWarning."""
    return Event(
        type=EventType.WARNING_RECORDED,
        data=warning.to_dict(),
        source="export_service"
    )


def create_asset_event(asset_id: str, chapter_id: str, marker: str, missing: bool) -> Event:
    """Create asset resolution event.

    Args:
        asset_id: Derived asset id
        chapter_id: Owning chapter
        marker: Placement marker
        missing: True when no payload could be obtained

    Returns:
        Event object
    """
    return Event(
        type=EventType.ASSET_MISSING if missing else EventType.ASSET_RESOLVED,
        data={
            "asset_id": asset_id,
            "chapter_id": chapter_id,
            "marker": marker
        },
        source="asset_resolver"
    )


def create_performance_metric_event(
    stage: str,
    metric_name: str,
    value: Any
) -> Event:
    """Create performance metric event.

    Args:
        stage: Pipeline stage name
        metric_name: Name of the metric
        value: Metric value

    Returns:
        Event object
    """
    return Event(
        type=EventType.PERFORMANCE_METRIC,
        data={
            "stage": stage,
            "metric_name": metric_name,
            "value": value
        },
        source=stage
    )
