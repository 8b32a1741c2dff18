"""Per-session orchestration of the multi-gate detection pipeline."""
import asyncio
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Awaitable, Deque, Dict, List, Optional
from hintgate.audio.chunk_gate import SegmentAccumulator
from hintgate.audio.models import AudioFrame
from hintgate.audio.vad import VadBoundary, VoiceActivityDetector
from hintgate.core.config import PipelineConfig, settings
from hintgate.core.logging import logger
from hintgate.detection.confirmation import ConfirmationDecision, ConfirmationGate
from hintgate.detection.hint_state import HintStateMachine
from hintgate.detection.models import (
    DetectionEvent,
    HintKind,
    HintState,
    HintStatus,
    LabelCategory,
    LabelDefinition,
    LabelDetectionRecord,
    enabled_labels,
)
from hintgate.detection.scheduler import AsyncioScheduler, Scheduler, wall_clock_ms
from hintgate.detection.status import StatusReconciler
from hintgate.services.events import (
    ConnectionStateChanged,
    EventBus,
    HintConfirmed,
    LabelDetected,
    PipelineError,
    PipelineLog,
    SpeechEnded,
    SpeechStarted,
    StatusChanged,
    TranscriptAvailable,
)
from hintgate.services.interfaces import Classifier, ClassifierError, HintGenerator, Transcriber
from hintgate.transcript.hallucination import compile_patterns, is_hallucination
from hintgate.transcript.quality import passes_transcript_gate, score_transcript


class SessionState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
    DESTROYED = "destroyed"


class HintSession:
    """
    Owns every piece of mutable pipeline state for one audio stream.

    Frames are pushed through ``process_frame`` (synchronous, never awaits).
    Each flushed segment that passes Gate A is processed by a single asyncio
    task; while it is outstanding newer segments are dropped. Results from
    before a ``reset()`` or ``stop()`` are discarded through the epoch
    counter.
    """

    def __init__(
        self,
        session_id: str,
        transcriber: Transcriber,
        classifier: Classifier,
        hint_generator: HintGenerator,
        config: Optional[PipelineConfig] = None,
        sample_rate: Optional[int] = None,
        scheduler: Optional[Scheduler] = None,
        clock=wall_clock_ms
    ):
        self.session_id = session_id
        self.transcriber = transcriber
        self.classifier = classifier
        self.hint_generator = hint_generator
        self.config = config or settings.pipeline
        self.sample_rate = sample_rate or settings.sample_rate
        self.clock = clock
        self.events = EventBus()

        self.vad = VoiceActivityDetector(self.config.vad)
        self.accumulator = SegmentAccumulator(self.config.vad.preroll_ms)
        self.reconciler = StatusReconciler(self.config.confirm_gate)
        self.gate = ConfirmationGate(self.config.confirm_gate, self.reconciler.recent_detections)
        self.hints = HintStateMachine(
            scheduler or AsyncioScheduler(),
            self.reconciler,
            self.config.hint,
            clock=clock,
            on_confirmed=self._on_hint_confirmed
        )
        self.reconciler.subscribe(self._publish_status)
        self.hints.subscribe(self._publish_status)
        self._patterns = compile_patterns(self.config.transcript_gate.extra_hallucination_patterns)

        self.labels: List[LabelDefinition] = []
        self.label_detections: Dict[str, LabelDetectionRecord] = {}
        self.history: Deque[str] = deque(maxlen=self.config.hint.history_size)
        self.state = SessionState.CREATED
        self.connection_state = "disconnected"
        self.in_flight = False
        self.epoch = 0
        self._segment_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None

        self.created_at = datetime.now()
        self.frames_processed = 0
        self.segments_flushed = 0
        self.segments_dropped = 0

        classifier.on_transport_error = self._on_transport_error

    # Lifecycle

    async def start(self, labels: List[LabelDefinition]) -> None:
        """
        Install the label set, open the classifier channel and accept frames.

        Raises:
            RuntimeError: the session was already started
            ClassifierError: the classifier channel could not be opened
        """
        if self.state is not SessionState.CREATED:
            raise RuntimeError(f"Session {self.session_id} cannot start from state {self.state.value}")

        self.labels = list(labels)
        self._reset_label_detections()
        self._set_connection_state("connecting")
        try:
            await self.classifier.connect(self.labels)
        except ClassifierError as e:
            logger.error(f"Session {self.session_id}: classifier connection failed: {e}")
            self._set_connection_state("error")
            self.events.emit(PipelineError(message=f"Classifier connection failed: {e}"))
            raise

        self.state = SessionState.RUNNING
        self._set_connection_state("connected")
        logger.info(
            f"Session {self.session_id} started with {len(enabled_labels(self.labels))} enabled labels"
        )

    async def stop(self) -> None:
        """Stop frame delivery and tear down timers, in-flight work and the classifier channel."""
        if self.state is not SessionState.RUNNING:
            return
        self.state = SessionState.STOPPED
        self.epoch += 1
        self.in_flight = False
        self.hints.reset()
        self.reconciler.reset()
        self.vad.reset()
        self.accumulator.clear()

        try:
            await self.classifier.close()
        except ClassifierError as e:
            logger.warning(f"Session {self.session_id}: error closing classifier: {e}")
        if self.connection_state != "error":
            self._set_connection_state("disconnected")
        logger.info(
            f"Session {self.session_id} stopped "
            f"({self.frames_processed} frames, {self.segments_flushed} segments, {self.segments_dropped} dropped)"
        )

    async def destroy(self) -> None:
        """Stop (if needed), cancel leftover work and detach all listeners."""
        if self.state is SessionState.DESTROYED:
            return
        await self.stop()
        for task in (self._segment_task, self._teardown_task):
            if task is not None and task is not asyncio.current_task() and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._segment_task = None
        self._teardown_task = None
        self.reconciler.unsubscribe(self._publish_status)
        self.hints.unsubscribe(self._publish_status)
        self.state = SessionState.DESTROYED

    async def drain(self) -> None:
        """Wait for the in-flight segment (if any) to finish."""
        task = self._segment_task
        if task is not None and not task.done():
            await asyncio.wait({task})

    @property
    def is_running(self) -> bool:
        return self.state is SessionState.RUNNING

    # Control

    async def replace_labels(self, labels: List[LabelDefinition]) -> None:
        """Swap the whole label set and regenerate the classifier schema."""
        self.labels = list(labels)
        self._reset_label_detections()
        if self.is_running:
            try:
                await self.classifier.update_labels(self.labels)
            except ClassifierError as e:
                logger.error(f"Session {self.session_id}: label update failed: {e}")
                self.events.emit(PipelineError(message=f"Label update failed: {e}"))
                return
        self._log(f"Label set replaced ({len(enabled_labels(self.labels))} enabled)")

    def reset(self) -> None:
        """
        Zero HintState, CurrentStatus, the ring buffer, debounce stamps,
        per-label detection records and the transcript history. Contains no
        suspension point.
        """
        self.epoch += 1
        self.hints.reset()
        self.reconciler.reset()
        self._reset_label_detections()
        self.history.clear()
        logger.info(f"Session {self.session_id} reset (epoch {self.epoch})")

    def confirm_hint(self) -> bool:
        """Accept the pending provisional hint now instead of waiting for the timer."""
        if not self.is_running:
            return False
        if not self.hints.confirm():
            self._log("No provisional hint to confirm")
            return False
        return True

    def cancel_hint(self) -> bool:
        """Dismiss the pending provisional hint without output."""
        if not self.is_running:
            return False
        pending = self.hints.state.display_name
        if not self.hints.cancel_provisional():
            self._log("No provisional hint to cancel")
            return False
        self._log(f"Provisional {pending} cancelled")
        return True

    def request_hint(self) -> bool:
        """
        Classify the most recent transcript again on demand.

        Returns:
            False when there is nothing to classify or a segment is in flight
        """
        if not self.is_running:
            return False
        if not self.history:
            self._log("Hint request ignored: no transcript yet")
            return False
        if self.in_flight:
            self._log("Hint request dropped: previous segment still in flight")
            return False
        self.in_flight = True
        self._segment_task = asyncio.get_running_loop().create_task(
            self._guarded(self._classify_transcript(self.history[-1], self.epoch), self.epoch)
        )
        return True

    def snapshot(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "connection_state": self.connection_state,
            "hint": self.hints.state.to_dict(),
            "status": self.reconciler.status.to_dict(),
            "labels": [label.id for label in enabled_labels(self.labels)],
            "label_detections": [record.to_dict() for record in self.label_detections.values()],
            "in_flight": self.in_flight,
            "frames_processed": self.frames_processed,
            "segments_flushed": self.segments_flushed,
            "segments_dropped": self.segments_dropped,
            "created_at": self.created_at.isoformat(),
        }

    # Audio path

    def process_frame(self, frame: AudioFrame) -> None:
        """Feed one frame through VAD and the accumulator; flush on a boundary."""
        if not self.is_running:
            return
        self.frames_processed += 1

        result = self.vad.process(frame)
        self.accumulator.add(frame, result.level_db, result.is_voiced)

        for boundary in result.boundaries:
            if boundary is VadBoundary.SPEECH_START:
                self.events.emit(SpeechStarted(at=self.clock()))
            elif boundary is VadBoundary.SPEECH_END:
                self.events.emit(SpeechEnded(at=self.clock()))

        if result.should_flush:
            self._flush()
        elif not self.vad.in_speech and not self.vad.pending_speech:
            self.accumulator.trim_preroll()

    def _flush(self) -> None:
        self.segments_flushed += 1
        if self.in_flight:
            self.segments_dropped += 1
            self.accumulator.clear()
            self._log("Segment dropped: previous segment still in flight")
            return

        quality = self.accumulator.quality(self.config.chunk_gate)
        if quality.skip:
            self.accumulator.clear()
            self._log(
                f"Gate A skip: {quality.duration_ms:.0f} ms, voiced {quality.voiced_ratio:.2f}, "
                f"level {quality.average_level_db:.1f} dB"
            )
            return

        pcm = self.accumulator.take_pcm()
        self.in_flight = True
        self._segment_task = asyncio.get_running_loop().create_task(
            self._guarded(self._run_segment(pcm, self.epoch), self.epoch)
        )

    async def _guarded(self, work: Awaitable[None], epoch: int) -> None:
        """Run one segment's work, reporting failures and clearing the in-flight flag."""
        try:
            await work
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Session {self.session_id}: segment processing failed: {e}", exc_info=True)
            if epoch == self.epoch:
                self.events.emit(PipelineError(message=f"Segment processing failed: {e}"))
        finally:
            if self._segment_task is asyncio.current_task():
                self.in_flight = False

    def _is_stale(self, epoch: int) -> bool:
        if epoch != self.epoch:
            logger.debug(f"Session {self.session_id}: discarding result from epoch {epoch}")
            return True
        return False

    async def _run_segment(self, pcm: bytes, epoch: int) -> None:
        gate_config = self.config.transcript_gate

        text = await self.transcriber.transcribe(pcm, self.sample_rate)
        if self._is_stale(epoch):
            return
        if not text:
            self._log("No transcript for segment")
            return
        if is_hallucination(text, gate_config.min_chars, self._patterns):
            self._log(f"Hallucination filtered: {text!r}")
            return

        score = score_transcript(text, gate_config)
        self.events.emit(TranscriptAvailable(text=text, is_final=True, quality_score=round(score, 3)))
        self.history.append(text)
        if not passes_transcript_gate(score, gate_config):
            self._log(f"Gate B withheld transcript (score {score:.2f} < {gate_config.min_score:.2f})")
            return

        await self._classify_transcript(text, epoch)

    async def _classify_transcript(self, text: str, epoch: int) -> None:
        if not enabled_labels(self.labels):
            self._log("No enabled labels, classification skipped")
            return

        try:
            detection = await self.classifier.classify(text, self.labels, self._current_label())
        except ClassifierError as e:
            logger.warning(f"Session {self.session_id}: classification failed: {e}")
            if not self._is_stale(epoch):
                self._log(f"Classification failed: {e}")
            return
        if self._is_stale(epoch):
            return
        if detection is None:
            self._log("Classifier abstained")
            return

        await self._apply_detection(detection, epoch)

    async def _apply_detection(self, detection: DetectionEvent, epoch: int) -> None:
        label = self._label_by_id(detection.label_id)
        if label is None:
            self._log(f"Detection for unknown or disabled label {detection.label_id!r} ignored")
            return

        decision = self.gate.evaluate(detection, self.clock())
        if not decision.accepted:
            self._log(f"Gate C rejected {label.display_name}: {decision.reason}")
            return
        self.label_detections[label.id].record(detection, self.clock())
        if self._handle_debounced(label, detection, decision):
            return

        if label.hint_kind is HintKind.GENERATED:
            hint_text = await self.hint_generator.generate(label, detection.quoted_expression, list(self.history))
            if self._is_stale(epoch) or self._handle_debounced(label, detection, decision):
                return
        else:
            hint_text = label.fixed_hint_text or label.display_name

        pending = self.hints.state
        if pending.status is HintStatus.PROVISIONAL and pending.label_id != label.id:
            self._log(f"Provisional {pending.display_name} superseded by {label.display_name}")
            self.hints.cancel_provisional()

        self.hints.start_provisional(label.id, hint_text, label.display_name, label.category)
        self._emit_detected(label, detection, decision)
        if decision.confirms_now:
            self.hints.confirm()

    def _handle_debounced(self, label: LabelDefinition, detection: DetectionEvent, decision: ConfirmationDecision) -> bool:
        """
        Deal with a label still inside its debounce window.

        A corroborating hit confirms the provisional hint already pending for
        the same label; anything else is dropped.

        Returns:
            True if the detection was consumed here
        """
        if not self.hints.is_debounced(label.id):
            return False
        pending = self.hints.state
        if (
            decision.confirms_now
            and pending.status is HintStatus.PROVISIONAL
            and pending.label_id == label.id
        ):
            self._emit_detected(label, detection, decision)
            self.hints.confirm()
        else:
            self._log(f"Debounced {label.display_name}")
        return True

    def _emit_detected(self, label: LabelDefinition, detection: DetectionEvent, decision: ConfirmationDecision) -> None:
        self.events.emit(LabelDetected(
            label_id=label.id,
            display_name=label.display_name,
            is_provisional=not decision.confirms_now,
            confidence=detection.confidence,
            evidence_strength=detection.evidence_strength.value,
            quoted_expression=detection.quoted_expression
        ))
        self._log(f"{label.display_name}: {decision.path.value} ({decision.reason})")

    def _reset_label_detections(self) -> None:
        self.label_detections = {label.id: LabelDetectionRecord(label.id) for label in enabled_labels(self.labels)}

    def _label_by_id(self, label_id: str) -> Optional[LabelDefinition]:
        for label in enabled_labels(self.labels):
            if label.id == label_id:
                return label
        return None

    def _current_label(self) -> Optional[LabelDefinition]:
        current_id = self.reconciler.current_label(LabelCategory.CONTINUOUS)
        return self._label_by_id(current_id) if current_id else None

    # Event plumbing

    def _log(self, message: str) -> None:
        logger.debug(f"Session {self.session_id}: {message}")
        self.events.emit(PipelineLog(message=message))

    def _publish_status(self) -> None:
        self.events.emit(StatusChanged(
            hint=self.hints.state.to_dict(),
            status=self.reconciler.status.to_dict()
        ))

    def _on_hint_confirmed(self, state: HintState) -> None:
        logger.info(f"Session {self.session_id}: hint confirmed for {state.display_name}: {state.hint_text!r}")
        self.events.emit(HintConfirmed(text=state.hint_text, label_id=state.label_id))

    def _set_connection_state(self, state: str) -> None:
        if state == self.connection_state:
            return
        self.connection_state = state
        self.events.emit(ConnectionStateChanged(state=state))

    def _on_transport_error(self, reason: str) -> None:
        if not self.is_running:
            return
        self.events.emit(PipelineError(message=reason))
        self._set_connection_state("error")
        self._teardown_task = asyncio.get_running_loop().create_task(self.stop())
