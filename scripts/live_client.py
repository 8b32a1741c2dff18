#!/usr/bin/env python3
"""
Microphone client for the hintgate backend.

Captures audio from the default input device, streams it to /ws/session
and prints transcripts, detections and confirmed hints as they arrive.

Usage:
    python scripts/live_client.py [labels.json]
"""
import asyncio
import json
import sys
from typing import Optional
import numpy as np
import sounddevice as sd
import websockets


# Audio configuration (must match server settings)
SAMPLE_RATE = 24000  # Hz
CHANNELS = 1  # Mono
CHUNK_SIZE = 4096  # samples per frame (~170 ms)

# Server configuration
SERVER_URL = "ws://localhost:8000/ws/session"

DEMO_LABELS = [
    {
        "id": "greeting",
        "display_name": "Greeting",
        "description": "Opening pleasantries and introductions",
        "category": "continuous",
        "hint_kind": "fixed",
        "fixed_hint_text": "Introduce the agenda",
    },
    {
        "id": "pricing",
        "display_name": "Pricing question",
        "description": "The customer asks about price or cost",
        "category": "momentary",
        "hint_kind": "generated",
    },
]

audio_queue: Optional[asyncio.Queue] = None
loop: Optional[asyncio.AbstractEventLoop] = None


def audio_callback(indata, frames, time_info, status):
    """Callback function for audio input stream (runs on the audio thread)."""
    if status:
        print(f"Audio status: {status}", file=sys.stderr)

    if audio_queue is None or loop is None:
        return

    # Convert float32 to int16
    audio_int16 = (indata[:, 0] * np.iinfo(np.int16).max).astype("<i2")
    loop.call_soon_threadsafe(enqueue_frame, audio_int16.tobytes())


def enqueue_frame(data: bytes) -> None:
    if audio_queue.full():
        # keep latency bounded
        audio_queue.get_nowait()
    audio_queue.put_nowait(data)


async def send_audio(websocket):
    """Send audio frames to the server."""
    while True:
        await websocket.send(await audio_queue.get())


def show_event(event: dict) -> None:
    kind = event.get("type")
    if kind == "session.started":
        print(f"Session started: {event['session_id']}\n")
    elif kind == "speech_started":
        print("... speaking", flush=True)
    elif kind == "transcript_available":
        print(f"[transcript] {event['text']} (score {event.get('quality_score')})")
    elif kind == "label_detected":
        state = "provisional" if event["is_provisional"] else "confirmed"
        print(f"[label] {event['display_name']} ({state}, {event['confidence']:.2f}, {event['evidence_strength']})")
    elif kind == "hint_confirmed":
        print(f"\n>>> HINT: {event['text']}\n")
    elif kind == "pipeline_error":
        print(f"[error] {event['message']}", file=sys.stderr)
    elif kind == "connection_state":
        print(f"[classifier] {event['state']}")


async def receive_events(websocket):
    """Receive and print JSON events from the server."""
    async for message in websocket:
        if isinstance(message, bytes):
            continue
        try:
            show_event(json.loads(message))
        except json.JSONDecodeError:
            print(f"Unexpected message: {message!r}", file=sys.stderr)


def load_labels(path: Optional[str]) -> list:
    if path is None:
        return DEMO_LABELS
    with open(path, encoding="utf-8") as handle:
        return json.load(handle)


async def main(labels_path: Optional[str] = None):
    """Main function to run the live client."""
    global audio_queue, loop

    audio_queue = asyncio.Queue(maxsize=50)
    loop = asyncio.get_running_loop()
    labels = load_labels(labels_path)

    print("=" * 70)
    print("hintgate - Live Client")
    print("=" * 70)
    print(f"Sample Rate: {SAMPLE_RATE} Hz")
    print(f"Frame Size: {CHUNK_SIZE} samples ({CHUNK_SIZE * 1000 // SAMPLE_RATE} ms)")
    print(f"Labels: {', '.join(label['display_name'] for label in labels)}")
    print(f"Server: {SERVER_URL}")
    print("=" * 70)
    print("Press Ctrl+C to stop\n")

    input_stream = sd.InputStream(
        samplerate=SAMPLE_RATE,
        channels=CHANNELS,
        dtype=np.float32,
        blocksize=CHUNK_SIZE,
        callback=audio_callback
    )

    try:
        async with websockets.connect(SERVER_URL, ping_interval=None) as websocket:
            await websocket.send(json.dumps({"type": "session.start", "labels": labels}))
            input_stream.start()

            send_task = asyncio.create_task(send_audio(websocket))
            receive_task = asyncio.create_task(receive_events(websocket))
            try:
                await asyncio.wait({send_task, receive_task}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                send_task.cancel()
                receive_task.cancel()
                await asyncio.gather(send_task, receive_task, return_exceptions=True)
    except websockets.exceptions.ConnectionClosed:
        print("\nConnection closed by server")
    finally:
        input_stream.stop()
        input_stream.close()
        print("\nAudio stream stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else None))
    except KeyboardInterrupt:
        print("\n\nExiting...")
