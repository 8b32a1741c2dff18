"""Outbound pipeline events and the per-session event bus."""
from dataclasses import asdict, dataclass, field
from typing import Callable, ClassVar, List, Optional
from hintgate.core.logging import logger


@dataclass
class PipelineEvent:
    kind: ClassVar[str] = "event"

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["type"] = self.kind
        return payload


@dataclass
class SpeechStarted(PipelineEvent):
    kind: ClassVar[str] = "speech_started"
    at: float = 0.0


@dataclass
class SpeechEnded(PipelineEvent):
    kind: ClassVar[str] = "speech_ended"
    at: float = 0.0


@dataclass
class TranscriptAvailable(PipelineEvent):
    kind: ClassVar[str] = "transcript_available"
    text: str = ""
    is_final: bool = True
    quality_score: Optional[float] = None


@dataclass
class LabelDetected(PipelineEvent):
    kind: ClassVar[str] = "label_detected"
    label_id: str = ""
    display_name: str = ""
    is_provisional: bool = True
    confidence: float = 0.0
    evidence_strength: str = ""
    quoted_expression: str = ""


@dataclass
class HintConfirmed(PipelineEvent):
    kind: ClassVar[str] = "hint_confirmed"
    text: str = ""
    label_id: Optional[str] = None


@dataclass
class PipelineLog(PipelineEvent):
    kind: ClassVar[str] = "pipeline_log"
    message: str = ""


@dataclass
class PipelineError(PipelineEvent):
    kind: ClassVar[str] = "pipeline_error"
    message: str = ""


@dataclass
class StatusChanged(PipelineEvent):
    kind: ClassVar[str] = "status_changed"
    hint: dict = field(default_factory=dict)
    status: dict = field(default_factory=dict)


@dataclass
class ConnectionStateChanged(PipelineEvent):
    kind: ClassVar[str] = "connection_state"
    state: str = ""


EventListener = Callable[[PipelineEvent], None]


class EventBus:
    """Fire-and-forget fan-out of pipeline events to subscribed listeners."""

    def __init__(self):
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: PipelineEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener failed on {event.kind}: {e}", exc_info=True)
