import asyncio
import json
import unittest

from ccwebui.errors import AssistantProcessError
from ccwebui.models import ChatRequest, ImageContent, ToolResultContent
from ccwebui.request_registry import RequestRegistry
from ccwebui.services.chat_stream import (
    CANCELLED_QUESTION_MESSAGE,
    CONTEXT_OVERFLOW_MESSAGE,
    ChatStreamGateway,
    QuestionLedger,
    build_tool_result_message,
    cancellation_tool_result,
    is_context_overflow,
    normalize_prompt,
)


def _assistant_text(text: str, session_id: str = "sess-1") -> dict:
    return {
        "type": "assistant",
        "session_id": session_id,
        "message": {"role": "assistant", "content": [{"type": "text", "text": text}]},
    }


def _ask_question(tool_use_id: str, session_id: str = "sess-1") -> dict:
    return {
        "type": "assistant",
        "session_id": session_id,
        "message": {
            "role": "assistant",
            "content": [
                {
                    "type": "tool_use",
                    "id": tool_use_id,
                    "name": "AskUserQuestion",
                    "input": {"questions": [{"question": "Which color?", "options": ["Red", "Blue"]}]},
                }
            ],
        },
    }


class _FakeRunner:
    def __init__(self, messages=None, error=None, wait_for_cancel=False) -> None:
        self.messages = list(messages or [])
        self.error = error
        self.wait_for_cancel = wait_for_cancel
        self.invocations = []
        self.handles = []
        self.closed = False

    async def run(self, invocation, handle):
        self.invocations.append(invocation)
        self.handles.append(handle)
        cancelled = asyncio.Event()
        handle.add_callback(cancelled.set)
        try:
            for message in self.messages:
                yield message
            if self.wait_for_cancel:
                await cancelled.wait()
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True


class _SpyRegistry(RequestRegistry):
    def __init__(self) -> None:
        super().__init__()
        self.complete_calls = 0

    def complete(self, request_id, handle=None):
        self.complete_calls += 1
        return super().complete(request_id, handle)


async def _collect(gateway: ChatStreamGateway, chat_request: ChatRequest) -> list[dict]:
    return [json.loads(frame) async for frame in gateway.stream(chat_request)]


class ChatStreamGatewayTests(unittest.IsolatedAsyncioTestCase):
    async def test_successful_stream_ends_with_done(self) -> None:
        registry = _SpyRegistry()
        runner = _FakeRunner(messages=[{"type": "system", "subtype": "init"}, _assistant_text("hi")])
        gateway = ChatStreamGateway(registry, runner)

        frames = await _collect(gateway, ChatRequest(message="hello", requestId="r1"))

        self.assertEqual([frame["type"] for frame in frames], ["claude_json", "claude_json", "done"])
        self.assertEqual(frames[1]["data"]["message"]["content"][0]["text"], "hi")
        self.assertEqual(registry.complete_calls, 1)
        self.assertFalse(registry.has("r1"))
        self.assertTrue(runner.closed)

    async def test_failure_ends_with_error(self) -> None:
        registry = _SpyRegistry()
        runner = _FakeRunner(messages=[_assistant_text("partial")], error=AssistantProcessError("boom", 1))
        gateway = ChatStreamGateway(registry, runner)

        frames = await _collect(gateway, ChatRequest(message="hello", requestId="r1"))

        self.assertEqual([frame["type"] for frame in frames], ["claude_json", "error"])
        self.assertEqual(frames[-1]["error"], "boom")
        self.assertEqual(registry.complete_calls, 1)

    async def test_context_overflow_is_reported_distinctly(self) -> None:
        runner = _FakeRunner(error=AssistantProcessError("API Error: input is too long for requested model"))
        gateway = ChatStreamGateway(RequestRegistry(), runner)

        frames = await _collect(gateway, ChatRequest(message="hello", requestId="r1"))

        self.assertEqual(frames, [{"type": "context_overflow", "error": CONTEXT_OVERFLOW_MESSAGE}])

    async def test_abort_stops_stream_without_done(self) -> None:
        registry = _SpyRegistry()
        runner = _FakeRunner(messages=[_assistant_text("working")], wait_for_cancel=True)
        gateway = ChatStreamGateway(registry, runner)

        frames = []
        async for frame in gateway.stream(ChatRequest(message="hello", requestId="r1")):
            frames.append(json.loads(frame))
            if len(frames) == 1:
                self.assertTrue(registry.abort("r1"))

        self.assertEqual([frame["type"] for frame in frames], ["claude_json"])
        self.assertTrue(runner.handles[0].cancelled)
        self.assertEqual(registry.complete_calls, 1)
        self.assertEqual(len(registry), 0)
        self.assertFalse(registry.abort("r1"))

    async def test_abort_during_failure_emits_nothing(self) -> None:
        registry = RequestRegistry()
        runner = _FakeRunner(wait_for_cancel=True, error=AssistantProcessError("killed", -15))
        gateway = ChatStreamGateway(registry, runner)
        stream = gateway.stream(ChatRequest(message="hello", requestId="r1"))

        async def _abort_soon() -> None:
            while not registry.has("r1"):
                await asyncio.sleep(0)
            registry.abort("r1")

        aborter = asyncio.create_task(_abort_soon())
        frames = [frame async for frame in stream]
        await aborter

        self.assertEqual(frames, [])

    async def test_abort_before_first_read_skips_the_run(self) -> None:
        registry = _SpyRegistry()
        runner = _FakeRunner(messages=[_assistant_text("never")])
        gateway = ChatStreamGateway(registry, runner)
        chat_request = ChatRequest(message="hello", requestId="r1")

        handle = gateway.begin(chat_request)
        self.assertTrue(registry.abort("r1"))
        frames = [frame async for frame in gateway.stream(chat_request, handle)]

        self.assertEqual(frames, [])
        self.assertEqual(runner.invocations, [])
        self.assertEqual(registry.complete_calls, 1)
        self.assertFalse(registry.has("r1"))

    async def test_consumer_disconnect_cancels_run(self) -> None:
        registry = _SpyRegistry()
        runner = _FakeRunner(messages=[_assistant_text("one"), _assistant_text("two")], wait_for_cancel=True)
        gateway = ChatStreamGateway(registry, runner)
        stream = gateway.stream(ChatRequest(message="hello", requestId="r1"))

        await stream.__anext__()
        await stream.aclose()

        self.assertTrue(runner.handles[0].cancelled)
        self.assertTrue(runner.closed)
        self.assertEqual(registry.complete_calls, 1)
        self.assertFalse(registry.has("r1"))

    async def test_question_answer_resumes_session(self) -> None:
        runner = _FakeRunner(messages=[_ask_question("toolu_1")])
        gateway = ChatStreamGateway(RequestRegistry(), runner)

        frames = await _collect(gateway, ChatRequest(message="pick a color", requestId="r1"))
        self.assertEqual(frames[0]["data"]["message"]["content"][0]["id"], "toolu_1")
        self.assertIn("toolu_1", gateway.questions)

        runner.messages = [_assistant_text("Blue it is")]
        answer = ChatRequest(
            requestId="r2",
            toolResult=ToolResultContent(tool_use_id="toolu_1", content="Blue"),
        )
        frames = await _collect(gateway, answer)

        invocation = runner.invocations[1]
        self.assertEqual(invocation.session_id, "sess-1")
        block = invocation.input_message["message"]["content"][0]
        self.assertEqual(block, {"type": "tool_result", "tool_use_id": "toolu_1", "content": "Blue"})
        self.assertNotIn("toolu_1", gateway.questions)
        self.assertEqual(frames[-1]["type"], "done")

    async def test_cancelled_question_sends_error_result(self) -> None:
        runner = _FakeRunner()
        ledger = QuestionLedger()
        ledger.record("toolu_1", "sess-1", "r1")
        gateway = ChatStreamGateway(RequestRegistry(), runner, questions=ledger)

        await _collect(gateway, ChatRequest(requestId="r2", toolResult=cancellation_tool_result("toolu_1")))

        block = runner.invocations[0].input_message["message"]["content"][0]
        self.assertTrue(block["is_error"])
        self.assertIn("cancelled", block["content"])
        self.assertEqual(block["content"], CANCELLED_QUESTION_MESSAGE)

    def test_tool_result_without_session_falls_back_to_prompt(self) -> None:
        gateway = ChatStreamGateway(RequestRegistry(), _FakeRunner())

        invocation = gateway.build_invocation(
            ChatRequest(
                message="Blue",
                requestId="r1",
                toolResult=ToolResultContent(tool_use_id="toolu_unknown", content="Blue"),
            )
        )

        self.assertIsNone(invocation.input_message)
        self.assertEqual(invocation.prompt, "Blue")

    def test_build_invocation_carries_options(self) -> None:
        gateway = ChatStreamGateway(RequestRegistry(), _FakeRunner())

        invocation = gateway.build_invocation(
            ChatRequest(
                message="/review",
                requestId="r1",
                sessionId="sess-9",
                allowedTools=["Read", "Bash(git:*)"],
                workingDirectory="/tmp/project",
                permissionMode="plan",
            )
        )

        self.assertEqual(invocation.prompt, "review")
        self.assertEqual(invocation.session_id, "sess-9")
        self.assertEqual(invocation.allowed_tools, ["Read", "Bash(git:*)"])
        self.assertEqual(invocation.working_directory, "/tmp/project")
        self.assertEqual(invocation.permission_mode, "plan")

    def test_images_become_structured_message(self) -> None:
        gateway = ChatStreamGateway(RequestRegistry(), _FakeRunner())

        invocation = gateway.build_invocation(
            ChatRequest(
                message="what is this?",
                requestId="r1",
                images=[ImageContent(mediaType="image/png", data="iVBORw0KGgo=")],
            )
        )

        content = invocation.input_message["message"]["content"]
        self.assertEqual(content[0]["source"]["media_type"], "image/png")
        self.assertEqual(content[1], {"type": "text", "text": "what is this?"})


class ChatStreamHelperTests(unittest.TestCase):
    def test_tool_result_message_shape(self) -> None:
        message = build_tool_result_message(ToolResultContent(tool_use_id="t1", content="ok"), "sess-1")

        self.assertEqual(message["type"], "user")
        self.assertIsNone(message["parent_tool_use_id"])
        self.assertEqual(message["session_id"], "sess-1")
        self.assertNotIn("is_error", message["message"]["content"][0])
        self.assertTrue(message["uuid"])

    def test_context_overflow_detection(self) -> None:
        self.assertTrue(is_context_overflow("Error: maximum context length is 200000 tokens"))
        self.assertTrue(is_context_overflow("Context window exceeded"))
        self.assertFalse(is_context_overflow("Permission denied"))

    def test_normalize_prompt_strips_leading_slash(self) -> None:
        self.assertEqual(normalize_prompt("/help"), "help")
        self.assertEqual(normalize_prompt("a/b"), "a/b")

    def test_ledger_is_bounded(self) -> None:
        ledger = QuestionLedger(max_pending=2)
        for index in range(3):
            ledger.record(f"t{index}", None, "r")

        self.assertEqual(len(ledger), 2)
        self.assertNotIn("t0", ledger)


if __name__ == "__main__":
    unittest.main()
