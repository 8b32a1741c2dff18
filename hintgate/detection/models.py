"""Label, detection and hint state models."""
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class LabelCategory(str, Enum):
    CONTINUOUS = "continuous"  # conversation stage / topic
    MOMENTARY = "momentary"  # single phrase or question


class HintKind(str, Enum):
    FIXED = "fixed"
    GENERATED = "generated"


class EvidenceStrength(str, Enum):
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"
    WEAK = "weak"


class HintStatus(str, Enum):
    NONE = "none"
    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"


class LabelDefinition(BaseModel):
    """A registered status/phrase label. Read-only for the pipeline."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    display_name: str = Field(min_length=1)
    description: Optional[str] = None
    category: LabelCategory = LabelCategory.CONTINUOUS
    hint_kind: HintKind = HintKind.FIXED
    fixed_hint_text: str = ""
    enabled: bool = True


@dataclass
class DetectionEvent:
    """One classifier verdict for one transcript."""
    label_id: str
    confidence: float
    evidence_strength: EvidenceStrength
    quoted_expression: str = ""
    observed_at: float = 0.0  # ms


@dataclass
class RecentDetection:
    label_id: str
    confidence: float
    evidence_strength: EvidenceStrength
    detected_at: float  # ms


@dataclass
class LabelDetectionRecord:
    """Last detection of one label that passed the Gate C floors; kept until reset."""
    label_id: str
    detected: bool = False
    detected_at: Optional[float] = None  # ms
    quoted_expression: Optional[str] = None
    confidence: Optional[float] = None
    evidence_strength: Optional[EvidenceStrength] = None

    def record(self, detection: DetectionEvent, at_ms: float) -> None:
        self.detected = True
        self.detected_at = at_ms
        self.confidence = detection.confidence
        self.evidence_strength = detection.evidence_strength
        # an empty quote keeps the previous one
        if detection.quoted_expression:
            self.quoted_expression = detection.quoted_expression

    def to_dict(self) -> dict:
        return {
            "label_id": self.label_id,
            "detected": self.detected,
            "detected_at": self.detected_at,
            "quoted_expression": self.quoted_expression,
            "confidence": self.confidence,
            "evidence_strength": self.evidence_strength.value if self.evidence_strength else None,
        }


@dataclass
class HintState:
    status: HintStatus = HintStatus.NONE
    label_id: Optional[str] = None
    hint_text: str = ""
    detected_at: Optional[float] = None
    display_name: Optional[str] = None
    version: int = 0

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "label_id": self.label_id,
            "hint_text": self.hint_text,
            "detected_at": self.detected_at,
            "display_name": self.display_name,
            "version": self.version,
        }


def enabled_labels(labels: List[LabelDefinition]) -> List[LabelDefinition]:
    return [label for label in labels if label.enabled]


def partition_labels(labels: List[LabelDefinition]) -> dict:
    """Enabled labels grouped by category, in definition order."""
    groups = {category: [] for category in LabelCategory}
    for label in enabled_labels(labels):
        groups[label.category].append(label)
    return groups
