"""Confidence/evidence confirmation gate (Gate C)."""
from dataclasses import dataclass
from enum import Enum
from hintgate.core.config import ConfirmGateConfig
from hintgate.detection.models import DetectionEvent, EvidenceStrength, RecentDetection
from hintgate.detection.ring_buffer import RecentDetectionBuffer


class ConfirmationPath(str, Enum):
    REJECTED = "rejected"
    IMMEDIATE = "immediate"  # strong explicit evidence, confirm at once
    MULTI_HIT = "multi_hit"  # corroborated by recent hits, confirm at once
    PROVISIONAL = "provisional"  # wait for the confirm timer


@dataclass
class ConfirmationDecision:
    path: ConfirmationPath
    hit_count: int = 0
    reason: str = ""

    @property
    def accepted(self) -> bool:
        return self.path is not ConfirmationPath.REJECTED

    @property
    def confirms_now(self) -> bool:
        return self.path in (ConfirmationPath.IMMEDIATE, ConfirmationPath.MULTI_HIT)


class ConfirmationGate:
    """Turns a classifier verdict into a confirmation path."""

    def __init__(self, config: ConfirmGateConfig, recent: RecentDetectionBuffer):
        self.config = config
        self.recent = recent

    def evaluate(self, detection: DetectionEvent, now_ms: float) -> ConfirmationDecision:
        """
        Apply the hard floors, record the hit and pick a confirmation path.

        Rejected detections leave the ring buffer untouched.
        """
        # written so that NaN confidence is rejected too
        if not detection.confidence >= self.config.min_confidence:
            return ConfirmationDecision(
                ConfirmationPath.REJECTED,
                reason=f"confidence {detection.confidence:.2f} < {self.config.min_confidence:.2f}"
            )
        if detection.evidence_strength is EvidenceStrength.WEAK:
            return ConfirmationDecision(ConfirmationPath.REJECTED, reason="weak evidence")

        self.recent.add(
            RecentDetection(
                label_id=detection.label_id,
                confidence=detection.confidence,
                evidence_strength=detection.evidence_strength,
                detected_at=now_ms
            ),
            now_ms
        )
        hits = self.recent.count_hits(detection.label_id, now_ms)

        if (
            detection.confidence >= self.config.high_confidence
            and detection.evidence_strength is EvidenceStrength.EXPLICIT
        ):
            return ConfirmationDecision(ConfirmationPath.IMMEDIATE, hits, "high confidence, explicit")
        if hits >= self.config.multi_hit_count:
            return ConfirmationDecision(ConfirmationPath.MULTI_HIT, hits, f"{hits} hits in window")
        return ConfirmationDecision(ConfirmationPath.PROVISIONAL, hits, "single hit")
