"""Label classification collaborators (OpenAI Realtime channel and Chat Completions)."""
import asyncio
import json
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from openai import AsyncOpenAI
from websockets.asyncio.client import connect as ws_connect
from hintgate.core.logging import logger
from hintgate.detection.models import (
    DetectionEvent,
    EvidenceStrength,
    LabelCategory,
    LabelDefinition,
    enabled_labels,
    partition_labels,
)
from hintgate.detection.scheduler import wall_clock_ms
from hintgate.services.interfaces import Classifier, ClassifierError

TOOL_NAME = "detect_label"
DEFAULT_CONFIDENCE = 0.5

_CATEGORY_HEADINGS = {
    LabelCategory.CONTINUOUS: "Conversation stages (the conversation stays in one stage until it moves to another)",
    LabelCategory.MOMENTARY: "Phrases (a single remark or question, independent of the stage)",
}


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


def build_instructions(labels: List[LabelDefinition], current_label: Optional[LabelDefinition] = None) -> str:
    """System instructions for the classifier, regenerated whenever labels or the current stage change."""
    groups = partition_labels(labels)
    if not any(groups.values()):
        return (
            "You track the status of a live conversation.\n"
            "Never reply with ordinary text.\n"
            "No labels are registered at the moment, so never call any function."
        )

    if current_label is None:
        current_text = "No label has been reached yet."
    else:
        current_text = f"\"{current_label.display_name}\""

    sections = []
    for category, members in groups.items():
        if not members:
            continue
        lines = []
        for index, label in enumerate(members, start=1):
            desc = f": {label.description}" if label.description else ""
            marker = " <- current" if current_label is not None and label.id == current_label.id else ""
            lines.append(f"{index}. \"{label.display_name}\"{desc}{marker}")
        sections.append(f"[{_CATEGORY_HEADINGS[category]}]\n" + "\n".join(lines))

    return f"""You track the progress of a live conversation from its transcripts and report label transitions.

[Rules]
- Never reply with ordinary text.
- Call {TOOL_NAME} only when the latest transcript shows a transition to one of the labels below.
- If no transition is detected, return nothing (abstain).
- Stages usually advance in order but may skip ahead or go back.

[Confidence and evidence]
confidence:
- 0.85 or more: very sure, the label is mentioned clearly
- 0.75 to 0.84: sure, strongly implied by the context
- below 0.75: not enough, do not call {TOOL_NAME}
evidence_strength:
- explicit: the speaker states it directly
- implicit: not stated, but clearly inferable from context
- weak: guess or thin evidence, do not call {TOOL_NAME}
When in doubt, abstain. Missing a transition is better than reporting a false one.

[Current status]
{current_text}

{chr(10).join(sections)}

When you call {TOOL_NAME}, quote the words that were actually heard in quoted_expression.
"""


def build_tool_parameters(labels: List[LabelDefinition]) -> dict:
    return {
        "type": "object",
        "properties": {
            "label": {
                "type": "string",
                "description": "Name of the label the conversation moved to",
                "enum": [label.display_name for label in enabled_labels(labels)],
            },
            "quoted_expression": {
                "type": "string",
                "description": "The heard words that show the transition, quoted verbatim",
            },
            "confidence": {
                "type": "number",
                "description": "Confidence from 0.0 to 1.0. Do not call below 0.75.",
                "minimum": 0,
                "maximum": 1,
            },
            "evidence_strength": {
                "type": "string",
                "description": "explicit = stated directly, implicit = inferred from context, weak = thin evidence",
                "enum": [e.value for e in EvidenceStrength],
            },
        },
        "required": ["label", "quoted_expression", "confidence", "evidence_strength"],
    }


_TOOL_DESCRIPTION = (
    "Call when the conversation moved to one of the registered labels. "
    "Only call with confidence >= 0.75 and evidence_strength other than 'weak'. "
    "If anything is ambiguous, do not call and return nothing."
)


def build_realtime_tools(labels: List[LabelDefinition]) -> List[dict]:
    if not enabled_labels(labels):
        return []
    return [{
        "type": "function",
        "name": TOOL_NAME,
        "description": _TOOL_DESCRIPTION,
        "parameters": build_tool_parameters(labels),
    }]


def build_chat_tools(labels: List[LabelDefinition]) -> List[dict]:
    if not enabled_labels(labels):
        return []
    return [{
        "type": "function",
        "function": {
            "name": TOOL_NAME,
            "description": _TOOL_DESCRIPTION,
            "parameters": build_tool_parameters(labels),
        },
    }]


def parse_detection(
    arguments: Any,
    labels: List[LabelDefinition],
    observed_at: Optional[float] = None
) -> Optional[DetectionEvent]:
    """
    Convert function-call arguments into a DetectionEvent.

    Unknown or disabled labels are treated as an abstention. Missing
    confidence/evidence fall back to values that the confirmation gate
    rejects.

    Raises:
        ClassifierError: arguments are not a JSON object or hold bad types
    """
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError as e:
            raise ClassifierError(f"Unparsable function arguments: {e}") from e
    if not isinstance(arguments, dict):
        raise ClassifierError(f"Function arguments must be an object, got {type(arguments).__name__}")

    name = arguments.get("label")
    by_name = {label.display_name: label for label in reversed(enabled_labels(labels))}
    label = by_name.get(name)
    if label is None:
        logger.warning(f"Classifier returned unknown label {name!r}, ignoring")
        return None

    raw_confidence = arguments.get("confidence")
    try:
        confidence = DEFAULT_CONFIDENCE if raw_confidence is None else float(raw_confidence)
    except (TypeError, ValueError) as e:
        raise ClassifierError(f"Invalid confidence {raw_confidence!r}") from e

    try:
        evidence = EvidenceStrength(arguments.get("evidence_strength") or EvidenceStrength.WEAK.value)
    except ValueError:
        logger.warning(f"Unknown evidence strength {arguments.get('evidence_strength')!r}, treating as weak")
        evidence = EvidenceStrength.WEAK

    return DetectionEvent(
        label_id=label.id,
        confidence=confidence,
        evidence_strength=evidence,
        quoted_expression=str(arguments.get("quoted_expression") or ""),
        observed_at=wall_clock_ms() if observed_at is None else observed_at
    )


class RealtimeClassifier(Classifier):
    """
    Classifier over the OpenAI Realtime WebSocket in text-only mode.

    Each request adds the transcript as a user message, asks for a response
    and waits for ``response.done``. Function calls collected on the way are
    acknowledged with a ``function_call_output`` item so the conversation
    stays consistent, without requesting another response.

    Every ``response.create`` carries a request id in its metadata. Only the
    response whose ``response.created`` echoes the id of the pending request
    is collected; late events of a timed-out response are ignored.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        url: str = "wss://api.openai.com/v1/realtime",
        timeout_s: float = 10.0,
        on_transport_error: Optional[Callable[[str], None]] = None,
        connect_fn: Callable[..., Any] = ws_connect
    ):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.timeout_s = timeout_s
        self.on_transport_error = on_transport_error
        self._connect_fn = connect_fn
        self.state = ConnectionState.DISCONNECTED
        self._ws = None
        self._reader: Optional[asyncio.Task] = None
        self._ready: Optional[asyncio.Event] = None
        self._lock: Optional[asyncio.Lock] = None
        self._pending: Optional[asyncio.Future] = None
        self._pending_calls: List[Dict[str, Any]] = []
        self._request_id: Optional[str] = None
        self._response_id: Optional[str] = None
        self._session_signature: Optional[str] = None
        self._closing = False

    def _set_state(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        self.state = state
        logger.info(f"Realtime classifier {state.value}")

    async def connect(self, labels: List[LabelDefinition]) -> None:
        self._set_state(ConnectionState.CONNECTING)
        self._ready = asyncio.Event()
        self._lock = asyncio.Lock()
        self._closing = False
        try:
            self._ws = await self._connect_fn(
                f"{self.url}?model={self.model}",
                additional_headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "OpenAI-Beta": "realtime=v1",
                }
            )
        except Exception as e:
            self._set_state(ConnectionState.ERROR)
            raise ClassifierError(f"Realtime connection failed: {e}") from e

        self._reader = asyncio.create_task(self._read_loop())
        try:
            await asyncio.wait_for(self._ready.wait(), timeout=self.timeout_s)
        except asyncio.TimeoutError as e:
            await self.close()
            self._set_state(ConnectionState.ERROR)
            raise ClassifierError("Realtime session was not created in time") from e
        if self.state is not ConnectionState.CONNECTED:
            raise ClassifierError("Realtime channel closed during connect")
        await self._update_session(labels, None)

    async def update_labels(self, labels: List[LabelDefinition]) -> None:
        if self.state is ConnectionState.CONNECTED:
            await self._update_session(labels, None)

    async def classify(
        self,
        transcript: str,
        labels: List[LabelDefinition],
        current_label: Optional[LabelDefinition] = None
    ) -> Optional[DetectionEvent]:
        if self.state is not ConnectionState.CONNECTED or self._lock is None:
            raise ClassifierError(f"Realtime channel is {self.state.value}")

        async with self._lock:
            await self._update_session(labels, current_label)
            self._pending = asyncio.get_running_loop().create_future()
            self._pending_calls = []
            self._request_id = uuid.uuid4().hex[:12]
            self._response_id = None
            try:
                await self._send({
                    "type": "conversation.item.create",
                    "item": {
                        "type": "message",
                        "role": "user",
                        "content": [{"type": "input_text", "text": f"[Transcript] {transcript}"}],
                    },
                })
                await self._send({
                    "type": "response.create",
                    "response": {"modalities": ["text"], "metadata": {"request_id": self._request_id}},
                })
                calls = await asyncio.wait_for(self._pending, timeout=self.timeout_s)
            except asyncio.TimeoutError as e:
                await self._cancel_response()
                raise ClassifierError(f"No classifier response within {self.timeout_s:.1f}s") from e
            finally:
                self._pending = None
                self._request_id = None
                self._response_id = None

            detection = None
            for call in calls:
                if call.get("call_id"):
                    await self._send({
                        "type": "conversation.item.create",
                        "item": {
                            "type": "function_call_output",
                            "call_id": call["call_id"],
                            "output": "ok",
                        },
                    })
                if call.get("name") == TOOL_NAME and detection is None:
                    detection = parse_detection(call.get("arguments"), labels)
            return detection

    async def close(self) -> None:
        self._closing = True
        self._fail_pending(ClassifierError("Realtime channel closed"))
        if self._reader is not None and self._reader is not asyncio.current_task():
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
        self._reader = None
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception as e:
                logger.debug(f"Error closing realtime socket: {e}")
            self._ws = None
        self._session_signature = None
        if self.state is not ConnectionState.ERROR:
            self._set_state(ConnectionState.DISCONNECTED)

    async def _update_session(self, labels: List[LabelDefinition], current_label: Optional[LabelDefinition]) -> None:
        instructions = build_instructions(labels, current_label)
        tools = build_realtime_tools(labels)
        signature = json.dumps([instructions, tools], ensure_ascii=False, sort_keys=True)
        if signature == self._session_signature:
            return
        await self._send({
            "type": "session.update",
            "session": {
                "modalities": ["text"],
                "instructions": instructions,
                "turn_detection": None,
                "tools": tools,
                "tool_choice": "auto" if tools else "none",
            },
        })
        self._session_signature = signature

    async def _cancel_response(self) -> None:
        event = {"type": "response.cancel"}
        if self._response_id:
            event["response_id"] = self._response_id
        try:
            await self._send(event)
        except ClassifierError as e:
            logger.debug(f"Could not cancel timed-out response: {e}")

    def _is_current_response(self, response_id: Optional[str]) -> bool:
        return self._pending is not None and self._response_id is not None and response_id == self._response_id

    async def _send(self, event: dict) -> None:
        if self._ws is None:
            raise ClassifierError("Realtime channel is not open")
        try:
            await self._ws.send(json.dumps(event, ensure_ascii=False))
        except Exception as e:
            raise ClassifierError(f"Failed to send {event.get('type')}: {e}") from e

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self.handle_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"Realtime channel error: {e}"
        else:
            reason = "Realtime channel closed"
        if not self._closing:
            self._transport_failed(reason)

    def handle_message(self, raw: Any) -> None:
        """Dispatch one server event."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to parse realtime message: {e}")
            return
        if not isinstance(data, dict):
            logger.warning(f"Ignoring realtime message that is not an object: {type(data).__name__}")
            return

        event_type = data.get("type")
        if event_type == "session.created":
            self._set_state(ConnectionState.CONNECTED)
            if self._ready is not None:
                self._ready.set()
        elif event_type == "session.updated":
            logger.debug("Realtime session updated")
        elif event_type == "response.created":
            response = data.get("response") or {}
            metadata = response.get("metadata") or {}
            if self._pending is not None and self._request_id and metadata.get("request_id") == self._request_id:
                self._response_id = response.get("id")
            else:
                logger.debug(f"Ignoring response {response.get('id')} of an earlier request")
        elif event_type == "response.function_call_arguments.done":
            if self._is_current_response(data.get("response_id")):
                self._pending_calls.append({
                    "name": data.get("name"),
                    "call_id": data.get("call_id"),
                    "arguments": data.get("arguments"),
                })
        elif event_type == "response.done":
            if self._is_current_response((data.get("response") or {}).get("id")) and not self._pending.done():
                self._pending.set_result(list(self._pending_calls))
        elif event_type == "error":
            message = (data.get("error") or {}).get("message") or "Unknown error"
            logger.error(f"Realtime API error: {message}")
            self._fail_pending(ClassifierError(message))

    def _fail_pending(self, error: Exception) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.set_exception(error)

    def _transport_failed(self, reason: str) -> None:
        logger.error(reason)
        self._set_state(ConnectionState.ERROR)
        self._fail_pending(ClassifierError(reason))
        if self._ready is not None:
            self._ready.set()
        if self.on_transport_error:
            self.on_transport_error(reason)


class ChatClassifier(Classifier):
    """Stateless classifier using Chat Completions tool calling."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini", timeout_s: float = 10.0):
        self.client = client
        self.model = model
        self.timeout_s = timeout_s

    async def classify(
        self,
        transcript: str,
        labels: List[LabelDefinition],
        current_label: Optional[LabelDefinition] = None
    ) -> Optional[DetectionEvent]:
        tools = build_chat_tools(labels)
        if not tools:
            return None

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": build_instructions(labels, current_label)},
                        {"role": "user", "content": f"[Transcript] {transcript}"},
                    ],
                    tools=tools,
                    tool_choice="auto",
                    temperature=0.0,
                ),
                timeout=self.timeout_s
            )
        except asyncio.TimeoutError as e:
            raise ClassifierError(f"No classifier response within {self.timeout_s:.1f}s") from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ClassifierError(f"Classification request failed: {e}") from e

        if not response.choices:
            return None
        for call in response.choices[0].message.tool_calls or []:
            if call.function.name == TOOL_NAME:
                return parse_detection(call.function.arguments, labels)
        return None
