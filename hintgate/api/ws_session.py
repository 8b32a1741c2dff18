"""WebSocket endpoint: PCM frames in, pipeline events out."""
import asyncio
import json
import uuid
from typing import List, Optional
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from hintgate.audio.ingestion import bytes_to_audio_frame, validate_audio_data
from hintgate.core.config import settings
from hintgate.core.logging import logger
from hintgate.detection.models import LabelDefinition
from hintgate.services import collaborators
from hintgate.services.events import PipelineEvent
from hintgate.services.interfaces import ClassifierError
from hintgate.services.session import HintSession
from hintgate.services.session_registry import SessionLimitError, session_registry

# 1 s of audio is far larger than any client frame
MAX_FRAME_BYTES = settings.sample_rate * 2


class ControlMessageError(ValueError):
    """A text message from the client could not be understood."""


def parse_control_message(text: str) -> dict:
    try:
        message = json.loads(text)
    except json.JSONDecodeError as e:
        raise ControlMessageError(f"Invalid JSON: {e}") from e
    if not isinstance(message, dict) or not isinstance(message.get("type"), str):
        raise ControlMessageError("Control message must be an object with a 'type' field")
    return message


def parse_labels(raw) -> List[LabelDefinition]:
    if not isinstance(raw, list):
        raise ControlMessageError("'labels' must be a list")
    try:
        return [LabelDefinition.model_validate(item) for item in raw]
    except ValidationError as e:
        raise ControlMessageError(f"Invalid label definition: {e.errors()[0]['msg']}") from e


def error_payload(message: str) -> dict:
    return {"type": "pipeline_error", "message": message}


async def pump_events(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Send queued event payloads in order until the ``None`` sentinel."""
    while True:
        payload = await outbox.get()
        if payload is None:
            return
        try:
            await websocket.send_json(payload)
        except Exception as e:
            logger.debug(f"Stopped sending events: {e}")
            return


async def start_session(session_id: str, message: dict, outbox: asyncio.Queue) -> Optional[HintSession]:
    """Build, register and start a session from a ``session.start`` message."""
    if message.get("type") != "session.start":
        raise ControlMessageError("First message must be session.start")

    labels = parse_labels(message.get("labels", []))
    try:
        config = settings.pipeline.with_overrides(message.get("config"))
    except ValidationError as e:
        raise ControlMessageError(f"Invalid pipeline config: {e.errors()[0]['msg']}") from e

    try:
        session = collaborators.build_session(session_id, config, message.get("hint_prompt"))
    except (RuntimeError, ValueError) as e:
        logger.error(f"Session {session_id} could not be created: {e}")
        outbox.put_nowait(error_payload(f"Session could not be created: {e}"))
        return None
    try:
        await session_registry.register(session)
    except SessionLimitError as e:
        outbox.put_nowait(error_payload(str(e)))
        return None

    outbox.put_nowait({"type": "session.started", "session_id": session_id})

    def enqueue(event: PipelineEvent) -> None:
        outbox.put_nowait(event.to_dict())

    session.events.subscribe(enqueue)
    try:
        await session.start(labels)
    except ClassifierError:
        # the session already reported the failure as an event
        await session_registry.unregister(session_id)
        await session.destroy()
        return None
    return session


async def handle_control(session: HintSession, message: dict) -> bool:
    """
    Apply one control message.

    Returns:
        False when the client asked to stop the session
    """
    kind = message["type"]
    if kind == "labels.replace":
        await session.replace_labels(parse_labels(message.get("labels")))
    elif kind == "session.reset":
        session.reset()
    elif kind == "hint.confirm":
        session.confirm_hint()
    elif kind == "hint.cancel":
        session.cancel_hint()
    elif kind == "hint.request":
        session.request_hint()
    elif kind == "session.stop":
        await session.stop()
        return False
    else:
        raise ControlMessageError(f"Unknown message type: {kind}")
    return True


async def process_session(session_id: str, websocket: WebSocket) -> None:
    """
    Run one session over an accepted WebSocket.

    Args:
        session_id: Unique identifier for this session
        websocket: WebSocket connection
    """
    outbox: asyncio.Queue = asyncio.Queue()
    sender = asyncio.create_task(pump_events(websocket, outbox))
    session: Optional[HintSession] = None

    try:
        try:
            first = await websocket.receive()
            if first["type"] == "websocket.disconnect":
                return
            if first.get("text") is None:
                raise ControlMessageError("First message must be session.start")
            message = parse_control_message(first["text"])
            session = await start_session(session_id, message, outbox)
        except ControlMessageError as e:
            logger.warning(f"Session {session_id} rejected: {e}")
            outbox.put_nowait(error_payload(str(e)))
        if session is None:
            return

        while session.is_running:
            received = await websocket.receive()
            if received["type"] == "websocket.disconnect":
                logger.info(f"WebSocket disconnected for session {session_id}")
                break

            data = received.get("bytes")
            if data is not None:
                if not validate_audio_data(data, MAX_FRAME_BYTES):
                    logger.warning(f"Invalid audio data from session {session_id}")
                    continue
                try:
                    frame = bytes_to_audio_frame(data, session_id, session.sample_rate)
                except ValueError as e:
                    logger.error(f"Error converting audio data for session {session_id}: {e}")
                    continue
                session.process_frame(frame)
                continue

            try:
                if not await handle_control(session, parse_control_message(received.get("text") or "")):
                    break
            except ControlMessageError as e:
                logger.warning(f"Session {session_id}: {e}")
                outbox.put_nowait(error_payload(str(e)))
        if not session.is_running:
            logger.info(f"Session {session_id} stopped, closing connection")
    finally:
        if session is not None:
            await session.destroy()
            await session_registry.unregister(session_id)
        outbox.put_nowait(None)
        await sender
        logger.info(f"Cleaned up session {session_id}")


async def websocket_session_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint handler for /ws/session.

    Expects ``session.start`` first, then binary PCM16LE frames and control messages.
    """
    await websocket.accept()

    session_id = f"ws-{uuid.uuid4().hex[:8]}"
    logger.info(f"New WebSocket connection: {session_id}")

    try:
        await process_session(session_id, websocket)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for session {session_id}")
    except Exception as e:
        logger.error(f"WebSocket error for {session_id}: {e}", exc_info=True)
    finally:
        try:
            await websocket.close()
        except RuntimeError:
            # already closed by the client
            pass
