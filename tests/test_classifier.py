"""Unit tests for classifier prompts, argument parsing and the Realtime/Chat backends."""
import asyncio
import json
from types import SimpleNamespace
import pytest
from hintgate.detection.models import EvidenceStrength
from hintgate.services.classifier import (
    TOOL_NAME,
    ChatClassifier,
    ConnectionState,
    RealtimeClassifier,
    build_chat_tools,
    build_instructions,
    build_realtime_tools,
    parse_detection,
)
from hintgate.services.interfaces import ClassifierError
from fakes import label

LABELS = [
    label("opening", display_name="Opening", description="Greetings and introductions"),
    label("proposal", display_name="Proposal"),
    label("pricing", display_name="Pricing question", category="momentary"),
    label("closing", display_name="Closing", enabled=False),
]


def test_instructions_partition_labels_by_category():
    text = build_instructions(LABELS)

    assert "1. \"Opening\": Greetings and introductions" in text
    assert "2. \"Proposal\"" in text
    # momentary labels are numbered in their own section
    assert "1. \"Pricing question\"" in text
    assert "Closing" not in text
    assert "No label has been reached yet." in text
    assert text.index("Conversation stages") < text.index("Phrases")


def test_instructions_mark_current_label():
    text = build_instructions(LABELS, LABELS[1])
    assert "\"Proposal\" <- current" in text
    assert "[Current status]\n\"Proposal\"" in text


def test_instructions_without_labels_forbid_calls():
    text = build_instructions([label("closing", enabled=False)])
    assert "never call any function" in text


def test_tool_schema_lists_enabled_display_names():
    [tool] = build_realtime_tools(LABELS)
    assert tool["name"] == TOOL_NAME
    params = tool["parameters"]
    assert params["properties"]["label"]["enum"] == ["Opening", "Proposal", "Pricing question"]
    assert params["properties"]["evidence_strength"]["enum"] == ["explicit", "implicit", "weak"]
    assert set(params["required"]) == {"label", "quoted_expression", "confidence", "evidence_strength"}

    [chat_tool] = build_chat_tools(LABELS)
    assert chat_tool["function"]["parameters"] == params
    assert build_realtime_tools([]) == []


def test_parse_detection_maps_display_name_to_id():
    det = parse_detection(
        json.dumps({
            "label": "Pricing question",
            "quoted_expression": "おいくらですか",
            "confidence": 0.9,
            "evidence_strength": "explicit",
        }),
        LABELS,
        observed_at=123.0
    )
    assert det.label_id == "pricing"
    assert det.confidence == 0.9
    assert det.evidence_strength is EvidenceStrength.EXPLICIT
    assert det.quoted_expression == "おいくらですか"
    assert det.observed_at == 123.0


def test_parse_detection_defaults_fail_the_gate():
    det = parse_detection({"label": "Opening"}, LABELS)
    assert det.confidence == 0.5
    assert det.evidence_strength is EvidenceStrength.WEAK
    assert det.quoted_expression == ""


def test_parse_detection_unknown_label_abstains():
    assert parse_detection({"label": "Nope", "confidence": 0.9}, LABELS) is None
    # disabled labels are unknown to the classifier
    assert parse_detection({"label": "Closing", "confidence": 0.9}, LABELS) is None


def test_parse_detection_unknown_evidence_is_weak():
    det = parse_detection({"label": "Opening", "confidence": 0.9, "evidence_strength": "certain"}, LABELS)
    assert det.evidence_strength is EvidenceStrength.WEAK


@pytest.mark.parametrize("arguments", ["{not json", "[1, 2]", {"label": "Opening", "confidence": "high"}])
def test_parse_detection_bad_arguments_raise(arguments):
    with pytest.raises(ClassifierError):
        parse_detection(arguments, LABELS)


class FakeRealtimeSocket:
    """Scripted stand-in for a websockets client connection."""

    def __init__(self, respond=None):
        self.respond = respond or (lambda event: [])
        self.sent = []
        self.incoming = asyncio.Queue()
        self.closed = False
        self.url = None
        self.headers = None

    async def send(self, raw):
        event = json.loads(raw)
        self.sent.append(event)
        for reply in self.respond(event):
            self.incoming.put_nowait(json.dumps(reply))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item

    async def close(self):
        self.closed = True
        self.incoming.put_nowait(None)


def connect_to(socket):
    async def fake_connect(url, additional_headers=None):
        socket.url = url
        socket.headers = additional_headers
        socket.incoming.put_nowait(json.dumps({"type": "session.created"}))
        return socket
    return fake_connect


def response_events(request, calls=(), response_id="resp_1"):
    """Server events for one ``response.create``, echoing its metadata."""
    metadata = request["response"]["metadata"]
    events = [{"type": "response.created", "response": {"id": response_id, "metadata": metadata}}]
    for index, arguments in enumerate(calls, start=1):
        events.append({
            "type": "response.function_call_arguments.done",
            "response_id": response_id,
            "name": TOOL_NAME,
            "call_id": f"call_{index}",
            "arguments": json.dumps(arguments),
        })
    events.append({"type": "response.done", "response": {"id": response_id, "metadata": metadata}})
    return events


def answer_with_call(arguments):
    def respond(event):
        if event["type"] != "response.create":
            return []
        return response_events(event, [arguments])
    return respond


def make_realtime(socket, **kwargs):
    return RealtimeClassifier(
        api_key="sk-test",
        model="gpt-4o-realtime-preview-2024-12-17",
        timeout_s=1.0,
        connect_fn=connect_to(socket),
        **kwargs
    )


def test_realtime_round_trip():
    socket = FakeRealtimeSocket(answer_with_call({
        "label": "Opening",
        "quoted_expression": "はじめまして",
        "confidence": 0.88,
        "evidence_strength": "explicit",
    }))
    classifier = make_realtime(socket)

    async def scenario():
        await classifier.connect(LABELS)
        result = await classifier.classify("はじめまして、山田です", LABELS)
        await classifier.close()
        return result

    det = asyncio.run(scenario())
    assert det.label_id == "opening"
    assert det.confidence == 0.88

    assert socket.url.endswith("?model=gpt-4o-realtime-preview-2024-12-17")
    assert socket.headers["Authorization"] == "Bearer sk-test"
    assert socket.headers["OpenAI-Beta"] == "realtime=v1"

    types = [event["type"] for event in socket.sent]
    # the call is acknowledged without asking for another response
    assert types == ["session.update", "conversation.item.create", "response.create", "conversation.item.create"]
    session = socket.sent[0]["session"]
    assert session["modalities"] == ["text"]
    assert session["turn_detection"] is None
    assert session["tools"][0]["name"] == TOOL_NAME
    assert socket.sent[1]["item"]["content"][0]["type"] == "input_text"
    assert socket.sent[3]["item"] == {"type": "function_call_output", "call_id": "call_1", "output": "ok"}
    assert socket.closed
    assert classifier.state is ConnectionState.DISCONNECTED


def test_realtime_resends_session_when_current_label_changes():
    socket = FakeRealtimeSocket(lambda event: response_events(event) if event["type"] == "response.create" else [])
    classifier = make_realtime(socket)

    async def scenario():
        await classifier.connect(LABELS)
        first = await classifier.classify("a transcript", LABELS)
        await classifier.classify("another transcript", LABELS, LABELS[0])
        return first

    assert asyncio.run(scenario()) is None
    updates = [event for event in socket.sent if event["type"] == "session.update"]
    assert len(updates) == 2
    assert "\"Opening\": Greetings and introductions <- current" in updates[1]["session"]["instructions"]


def test_realtime_error_event_fails_request():
    def respond(event):
        if event["type"] == "response.create":
            return [{"type": "error", "error": {"message": "rate limited"}}]
        return []

    classifier = make_realtime(FakeRealtimeSocket(respond))

    async def scenario():
        await classifier.connect(LABELS)
        with pytest.raises(ClassifierError, match="rate limited"):
            await classifier.classify("a transcript", LABELS)
        await classifier.close()

    asyncio.run(scenario())


def test_realtime_timeout_raises():
    classifier = make_realtime(FakeRealtimeSocket())
    classifier.timeout_s = 0.05

    async def scenario():
        await classifier.connect(LABELS)
        with pytest.raises(ClassifierError, match="No classifier response"):
            await classifier.classify("a transcript", LABELS)
        await classifier.close()

    asyncio.run(scenario())


def test_realtime_ignores_late_response_of_timed_out_request():
    requests = []

    def respond(event):
        if event["type"] == "response.create":
            requests.append(event)
        return []

    socket = FakeRealtimeSocket(respond)
    classifier = make_realtime(socket)
    classifier.timeout_s = 0.05
    late_call = {"label": "Opening", "quoted_expression": "はじめまして", "confidence": 0.9, "evidence_strength": "explicit"}

    async def scenario():
        await classifier.connect(LABELS)
        with pytest.raises(ClassifierError, match="No classifier response"):
            await classifier.classify("はじめまして", LABELS)
        assert socket.sent[-1]["type"] == "response.cancel"

        classifier.timeout_s = 1.0
        second = asyncio.create_task(classifier.classify("unrelated small talk", LABELS))
        await asyncio.sleep(0.01)
        # the first response finishes while the second request is waiting
        late = response_events(requests[0], [late_call], response_id="resp_late")
        for reply in late + response_events(requests[1], response_id="resp_2"):
            socket.incoming.put_nowait(json.dumps(reply))
        return await second

    assert asyncio.run(scenario()) is None
    assert requests[0]["response"]["metadata"] != requests[1]["response"]["metadata"]
    # no acknowledgement is sent for a call that belongs to the abandoned request
    assert not any(e["item"].get("type") == "function_call_output" for e in socket.sent if "item" in e)


def test_realtime_ignores_calls_without_matching_response():
    socket = FakeRealtimeSocket()
    classifier = make_realtime(socket)
    classifier.timeout_s = 0.05

    async def scenario():
        await classifier.connect(LABELS)
        task = asyncio.create_task(classifier.classify("a transcript", LABELS))
        await asyncio.sleep(0.01)
        socket.incoming.put_nowait(json.dumps({
            "type": "response.function_call_arguments.done",
            "response_id": "resp_other",
            "name": TOOL_NAME,
            "call_id": "call_x",
            "arguments": json.dumps({"label": "Opening", "confidence": 0.9, "evidence_strength": "explicit"}),
        }))
        socket.incoming.put_nowait(json.dumps({"type": "response.done", "response": {"id": "resp_other"}}))
        with pytest.raises(ClassifierError, match="No classifier response"):
            await task

    asyncio.run(scenario())


def test_realtime_channel_loss_is_reported():
    socket = FakeRealtimeSocket()
    failures = []
    classifier = make_realtime(socket, on_transport_error=failures.append)

    async def scenario():
        await classifier.connect(LABELS)
        socket.incoming.put_nowait(None)
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert failures == ["Realtime channel closed"]
    assert classifier.state is ConnectionState.ERROR


def test_realtime_classify_requires_connection():
    classifier = make_realtime(FakeRealtimeSocket())

    async def scenario():
        with pytest.raises(ClassifierError):
            await classifier.classify("a transcript", LABELS)

    asyncio.run(scenario())


def test_realtime_connect_failure_raises():
    async def refuse(url, additional_headers=None):
        raise OSError("connection refused")

    classifier = RealtimeClassifier(api_key="sk-test", model="m", connect_fn=refuse)

    async def scenario():
        with pytest.raises(ClassifierError, match="connection refused"):
            await classifier.connect(LABELS)

    asyncio.run(scenario())
    assert classifier.state is ConnectionState.ERROR


def test_realtime_ignores_garbage_messages():
    classifier = make_realtime(FakeRealtimeSocket())
    classifier.handle_message("not json")
    # valid JSON that is not an event object
    classifier.handle_message(json.dumps(["unexpected"]))
    classifier.handle_message("null")
    classifier.handle_message(json.dumps({"type": "response.done"}))
    assert classifier.state is ConnectionState.DISCONNECTED


class FakeCompletions:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


def chat_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


def tool_call_response(name, arguments):
    call = SimpleNamespace(function=SimpleNamespace(name=name, arguments=json.dumps(arguments)))
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(tool_calls=[call], content=None))])


def test_chat_classifier_tool_call():
    completions = FakeCompletions(tool_call_response(TOOL_NAME, {
        "label": "Proposal",
        "quoted_expression": "ご提案",
        "confidence": 0.8,
        "evidence_strength": "implicit",
    }))
    classifier = ChatClassifier(chat_client(completions), model="gpt-4o-mini")

    det = asyncio.run(classifier.classify("ご提案させてください", LABELS, LABELS[0]))
    assert det.label_id == "proposal"
    assert det.evidence_strength is EvidenceStrength.IMPLICIT

    [request] = completions.requests
    assert request["model"] == "gpt-4o-mini"
    assert request["tools"][0]["function"]["name"] == TOOL_NAME
    assert "\"Opening\": Greetings and introductions <- current" in request["messages"][0]["content"]


def test_chat_classifier_abstains_without_tool_call():
    response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(tool_calls=None, content="none"))])
    classifier = ChatClassifier(chat_client(FakeCompletions(response)))
    assert asyncio.run(classifier.classify("hello there", LABELS)) is None


def test_chat_classifier_failure_raises():
    classifier = ChatClassifier(chat_client(FakeCompletions(error=RuntimeError("500"))))
    with pytest.raises(ClassifierError):
        asyncio.run(classifier.classify("hello there", LABELS))
