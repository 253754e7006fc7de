import json

import httpx
import pytest

from assistant.domain.orchestration.core.task_service import TaskService
from assistant.domain.tool.email_tool import MAX_BODY_LENGTH, PostmarkClient, strip_html
from assistant.domain.tool.rate_limiter import RateLimiter
from assistant.domain.tool.task_tools import create_default_registry
from assistant.domain.tool.tool_executor import ToolCall, ToolExecutor, format_tool_result, parse_tool_call
from assistant.domain.tool.tool_registry import ToolContext, ToolResult
from assistant.infrastructure.persistence.task_repository import TaskRepository
from assistant.infrastructure.persistence.user_repository import UserRepository


class PostmarkStub:
    """Records requests and answers like the PostMark email endpoint"""

    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self.body = body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        payload = json.loads(request.content)
        body = self.body if self.body is not None else {
            "To": payload["To"],
            "SubmittedAt": "2026-10-17T09:00:00Z",
            "MessageID": "msg-123",
            "ErrorCode": 0,
            "Message": "OK",
        }
        return httpx.Response(self.status_code, json=body)


def postmark_client(stub, api_key="server-token", from_email="assistant@example.com"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return PostmarkClient(api_key, from_email, http_client=http_client)


def make_context(database=None, email_client=None, limiter=None, calls=10):
    service = None
    if database is not None:
        service = TaskService(TaskRepository(database), UserRepository(database))
    return ToolContext(
        user_id="alice",
        task_service=service,
        rate_limiter=limiter or RateLimiter(),
        email_client=email_client,
        email_rate_limit_calls=calls,
    )


def email_call(**overrides):
    params = {"to": "bob@example.com", "subject": "Lunch", "textBody": "Noon at the usual place?"}
    params.update(overrides)
    return ToolCall(name="sendEmail", params=params)


class TestParseToolCall:
    def test_fenced_json_block(self):
        text = 'Let me add that.\n```json\n{"tool": "createTask", "params": {"title": "Milk"}}\n```'

        call = parse_tool_call(text)

        assert call.name == "createTask"
        assert call.params == {"title": "Milk"}

    def test_missing_params_default_to_empty(self):
        assert parse_tool_call('```json\n{"tool": "listTasks"}\n```').params == {}

    def test_plain_reply_has_no_call(self):
        assert parse_tool_call("Sure, anything else?") is None

    def test_malformed_block_is_skipped(self):
        text = '```json\n{not json}\n```\n```json\n{"tool": "listTasks", "params": {}}\n```'

        assert parse_tool_call(text).name == "listTasks"

    def test_json_without_tool_name(self):
        assert parse_tool_call('```json\n{"answer": 42}\n```') is None


class TestFormatToolResult:
    def test_success_includes_data(self):
        text = format_tool_result("listTasks", ToolResult(success=True, message="Found 0 tasks", data=[]))

        assert text == "[listTasks] Found 0 tasks\n[]"

    def test_failure(self):
        text = format_tool_result("sendEmail", ToolResult(success=False, error="nope"))

        assert text == "[sendEmail] Error: nope"


class TestRegistry:
    def test_default_tools(self):
        registry = create_default_registry()

        assert registry.get_available_tools() == ["createTask", "listTasks", "completeTask", "sendEmail"]
        assert [t.name for t in registry.get_tools_by_category("communication")] == ["sendEmail"]
        assert registry.get_tools_by_category("weather") == []


class TestToolExecutor:
    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        executor = ToolExecutor(create_default_registry())

        result = await executor.execute(ToolCall(name="orderPizza"), make_context())

        assert result.success is False
        assert result.error.startswith("Unknown tool: orderPizza")

    @pytest.mark.asyncio
    async def test_invalid_params(self):
        executor = ToolExecutor(create_default_registry())

        result = await executor.execute(ToolCall(name="completeTask", params={}), make_context())

        assert result.success is False
        assert "taskId" in result.error

    @pytest.mark.asyncio
    async def test_params_must_be_an_object(self):
        executor = ToolExecutor(create_default_registry())

        result = await executor.execute(ToolCall(name="listTasks", params=["x"]), make_context())

        assert result.error == "Invalid parameters: params must be a JSON object"

    @pytest.mark.asyncio
    async def test_task_tools_round_trip(self, database):
        executor = ToolExecutor(create_default_registry())
        context = make_context(database)

        created = await executor.execute(
            ToolCall(name="createTask", params={"title": "Buy milk", "priority": "high"}), context
        )
        listed = await executor.execute(ToolCall(name="listTasks", params={"completed": False}), context)
        completed = await executor.execute(
            ToolCall(name="completeTask", params={"taskId": created.data["id"]}), context
        )

        assert created.success is True
        assert created.message == "Task created: Buy milk"
        assert created.data["priority"] == "high"
        assert [t["title"] for t in listed.data] == ["Buy milk"]
        assert completed.data["completed"] is True

    @pytest.mark.asyncio
    async def test_completing_unknown_task_fails(self, database):
        executor = ToolExecutor(create_default_registry())

        result = await executor.execute(ToolCall(name="completeTask", params={"taskId": "ghost"}), make_context(database))

        assert result.success is False
        assert result.error == "Task not found"


class TestSendEmail:
    @pytest.mark.asyncio
    async def test_sends_and_records_the_call(self):
        stub = PostmarkStub()
        limiter = RateLimiter()
        executor = ToolExecutor(create_default_registry())

        result = await executor.execute(
            email_call(htmlBody="<p>Noon?</p>"), make_context(email_client=postmark_client(stub), limiter=limiter)
        )

        assert result.success is True
        assert result.message == "Email sent to bob@example.com"
        assert result.data == {"messageId": "msg-123", "to": "bob@example.com", "submittedAt": "2026-10-17T09:00:00Z"}

        [request] = stub.requests
        assert request.headers["X-Postmark-Server-Token"] == "server-token"
        assert json.loads(request.content) == {
            "From": "assistant@example.com",
            "To": "bob@example.com",
            "Subject": "Lunch",
            "TextBody": "Noon at the usual place?",
            "HtmlBody": "Noon?",
        }
        assert limiter.check_limit("alice", "email", 1, 3_600_000) is False

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        stub = PostmarkStub()
        executor = ToolExecutor(create_default_registry())

        result = await executor.execute(email_call(), make_context(email_client=postmark_client(stub, api_key=None)))

        assert result.error == "PostMark API credentials not configured"
        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        stub = PostmarkStub()
        executor = ToolExecutor(create_default_registry())
        context = make_context(email_client=postmark_client(stub), calls=1)

        assert (await executor.execute(email_call(), context)).success is True
        result = await executor.execute(email_call(), context)

        assert result.success is False
        assert result.error.startswith("Rate limit exceeded. You can send up to 1 emails per hour.")
        assert len(stub.requests) == 1

    @pytest.mark.asyncio
    async def test_size_limits(self):
        stub = PostmarkStub()
        executor = ToolExecutor(create_default_registry())
        context = make_context(email_client=postmark_client(stub))

        subject = await executor.execute(email_call(subject="s" * 201), context)
        body = await executor.execute(email_call(textBody="b" * (MAX_BODY_LENGTH + 1)), context)
        html = await executor.execute(email_call(htmlBody="<b>" + "h" * (MAX_BODY_LENGTH + 1) + "</b>"), context)

        assert subject.error == "Email subject too long (max 200 characters)"
        assert body.error == "Email body too long (max 10240 characters)"
        assert html.error == "Email HTML body too long (max 10240 characters)"
        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_html_under_limit_after_stripping_tags(self):
        stub = PostmarkStub()
        executor = ToolExecutor(create_default_registry())
        html = "<div>" * 3000 + "hi" + "</div>" * 3000

        result = await executor.execute(email_call(htmlBody=html), make_context(email_client=postmark_client(stub)))

        assert result.success is True

    @pytest.mark.asyncio
    async def test_api_rejection_does_not_count_against_limit(self):
        stub = PostmarkStub(status_code=422, body={"ErrorCode": 300, "Message": "Invalid 'To' address"})
        limiter = RateLimiter()
        executor = ToolExecutor(create_default_registry())

        result = await executor.execute(email_call(), make_context(email_client=postmark_client(stub), limiter=limiter))

        assert result.success is False
        assert result.error == "Invalid 'To' address"
        assert limiter.check_limit("alice", "email", 1, 3_600_000) is True

    @pytest.mark.asyncio
    async def test_invalid_recipient_is_rejected_before_sending(self):
        stub = PostmarkStub()
        executor = ToolExecutor(create_default_registry())

        result = await executor.execute(email_call(to="not-an-address"), make_context(email_client=postmark_client(stub)))

        assert result.success is False
        assert stub.requests == []

    def test_strip_html(self):
        assert strip_html('<p class="x">Hello <b>there</b></p>') == "Hello there"
