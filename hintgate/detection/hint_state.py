"""Provisional -> confirmed hint lifecycle with per-label debounce."""
from typing import Any, Callable, Dict, Optional
from hintgate.core.config import HintTimingConfig
from hintgate.core.logging import logger
from hintgate.detection.models import HintState, HintStatus, LabelCategory
from hintgate.detection.observable import Observable
from hintgate.detection.scheduler import Scheduler, wall_clock_ms
from hintgate.detection.status import StatusReconciler


class HintStateMachine(Observable):
    """
    Owns the single pending/confirmed hint of a session.

    none -> provisional -> confirmed. A provisional hint confirms when the
    confirm timer fires or when ``confirm()`` is called directly. At most one
    timer handle is live at any time, and each successful
    ``start_provisional`` produces at most one confirmation.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        reconciler: StatusReconciler,
        config: Optional[HintTimingConfig] = None,
        clock: Callable[[], float] = wall_clock_ms,
        on_confirmed: Optional[Callable[[HintState], None]] = None
    ):
        super().__init__()
        self.scheduler = scheduler
        self.reconciler = reconciler
        self.config = config or HintTimingConfig()
        self.clock = clock
        self.on_confirmed = on_confirmed
        self.state = HintState()
        self._timer: Optional[Any] = None
        self._last_trigger: Dict[str, float] = {}

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    def is_debounced(self, label_id: str, now_ms: Optional[float] = None) -> bool:
        last = self._last_trigger.get(label_id)
        if last is None:
            return False
        now_ms = self.clock() if now_ms is None else now_ms
        return now_ms - last < self.config.debounce_ms

    def start_provisional(
        self,
        label_id: str,
        hint_text: str,
        display_name: str,
        category: LabelCategory = LabelCategory.CONTINUOUS
    ) -> bool:
        """
        Enter the provisional state for a label and arm the confirm timer.

        Returns:
            False if the label is still inside its debounce window (no-op)
        """
        now = self.clock()
        if self.is_debounced(label_id, now):
            logger.debug(f"Debounced re-trigger of label {label_id}")
            return False

        self._cancel_timer()
        self.reconciler.apply(category, label_id, now)
        self.state = HintState(
            status=HintStatus.PROVISIONAL,
            label_id=label_id,
            hint_text=hint_text,
            detected_at=now,
            display_name=display_name,
            version=self.state.version + 1
        )
        self._last_trigger[label_id] = now
        self._timer = self.scheduler.schedule(self.config.confirm_delay_ms, self._on_confirm_timer)
        self._notify()
        return True

    def confirm(self) -> bool:
        if self.state.status is not HintStatus.PROVISIONAL:
            return False
        self._cancel_timer()
        self.state.status = HintStatus.CONFIRMED
        self.state.version += 1
        self._notify()
        if self.on_confirmed:
            self.on_confirmed(self.state)
        return True

    def cancel_provisional(self) -> bool:
        if self.state.status is not HintStatus.PROVISIONAL:
            return False
        self._cancel_timer()
        self.state = HintState(version=self.state.version + 1)
        self._notify()
        return True

    def reset(self) -> None:
        """Back to none from any state; also forgets every debounce stamp."""
        self._cancel_timer()
        self._last_trigger.clear()
        if self.state.status is HintStatus.NONE and self.state.label_id is None:
            return
        self.state = HintState(version=self.state.version + 1)
        self._notify()

    def _on_confirm_timer(self) -> None:
        self._timer = None
        self.confirm()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self.scheduler.cancel(self._timer)
            self._timer = None
