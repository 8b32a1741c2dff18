"""Contracts for the external collaborators the pipeline depends on."""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional
from hintgate.detection.models import DetectionEvent, LabelDefinition


class ClassifierError(Exception):
    """The classification round-trip failed or returned unusable data."""


class Transcriber(ABC):
    """
    Contract for the speech-to-text service.
    Failures are reported as ``None`` ("no transcript, abstain"), never raised.
    """

    @abstractmethod
    async def transcribe(self, pcm: bytes, sample_rate: int) -> Optional[str]:
        """
        Transcribe one mono PCM16 segment.

        Args:
            pcm: Little-endian PCM16 samples
            sample_rate: Sample rate of ``pcm``

        Returns:
            Transcript text, or None when nothing usable was produced
        """


class Classifier(ABC):
    """
    Contract for the label classifier.

    ``classify`` returns None when the classifier abstains; that is a valid
    outcome. Request failures raise ClassifierError. Loss of the underlying
    channel is reported through ``on_transport_error``.
    """

    on_transport_error: Optional[Callable[[str], None]] = None

    async def connect(self, labels: List[LabelDefinition]) -> None:
        """Open the channel (if any) and install the label schema."""

    async def update_labels(self, labels: List[LabelDefinition]) -> None:
        """Regenerate the classifier-facing schema for a new label set."""

    @abstractmethod
    async def classify(
        self,
        transcript: str,
        labels: List[LabelDefinition],
        current_label: Optional[LabelDefinition] = None
    ) -> Optional[DetectionEvent]:
        """Classify one transcript against the enabled labels."""

    async def close(self) -> None:
        """Release the channel (if any)."""


class HintGenerator(ABC):
    """Contract for generated hint text. Must always return a string."""

    @abstractmethod
    async def generate(self, label: LabelDefinition, quoted_expression: str, history: List[str]) -> str:
        """Produce a short hint, or a fallback string on failure."""
