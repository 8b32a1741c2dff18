"""Current conversation status, tracked per label category."""
from dataclasses import dataclass, field
from typing import Optional
from hintgate.core.config import ConfirmGateConfig
from hintgate.detection.models import LabelCategory
from hintgate.detection.observable import Observable
from hintgate.detection.ring_buffer import RecentDetectionBuffer


@dataclass
class CurrentStatus:
    continuous_label: Optional[str] = None
    continuous_changed_at: Optional[float] = None
    momentary_label: Optional[str] = None
    momentary_changed_at: Optional[float] = None
    recent_detections: RecentDetectionBuffer = field(default_factory=RecentDetectionBuffer)
    version: int = 0

    def is_blank(self) -> bool:
        return (
            self.continuous_label is None
            and self.continuous_changed_at is None
            and self.momentary_label is None
            and self.momentary_changed_at is None
            and len(self.recent_detections) == 0
        )

    def to_dict(self) -> dict:
        return {
            "continuous_label": self.continuous_label,
            "continuous_changed_at": self.continuous_changed_at,
            "momentary_label": self.momentary_label,
            "momentary_changed_at": self.momentary_changed_at,
            "recent_detections": [
                {
                    "label_id": d.label_id,
                    "confidence": d.confidence,
                    "evidence_strength": d.evidence_strength.value,
                    "detected_at": d.detected_at,
                }
                for d in self.recent_detections.snapshot()
            ],
            "version": self.version,
        }


class StatusReconciler(Observable):
    """
    Maintains the continuous and momentary label tracks independently.

    A momentary phrase hit never erases the conversation stage held by the
    continuous track. Both tracks start unset.
    """

    def __init__(self, config: Optional[ConfirmGateConfig] = None):
        super().__init__()
        config = config or ConfirmGateConfig()
        self.status = CurrentStatus(
            recent_detections=RecentDetectionBuffer(config.ring_buffer_size, config.multi_hit_window_ms)
        )

    @property
    def recent_detections(self) -> RecentDetectionBuffer:
        return self.status.recent_detections

    def current_label(self, category: LabelCategory) -> Optional[str]:
        if category is LabelCategory.CONTINUOUS:
            return self.status.continuous_label
        return self.status.momentary_label

    def apply(self, category: LabelCategory, label_id: str, at_ms: float) -> None:
        if category is LabelCategory.CONTINUOUS:
            self.status.continuous_label = label_id
            self.status.continuous_changed_at = at_ms
        else:
            self.status.momentary_label = label_id
            self.status.momentary_changed_at = at_ms
        self.status.version += 1
        self._notify()

    def reset(self) -> None:
        if self.status.is_blank():
            return
        self.status.continuous_label = None
        self.status.continuous_changed_at = None
        self.status.momentary_label = None
        self.status.momentary_changed_at = None
        self.status.recent_detections.clear()
        self.status.version += 1
        self._notify()
