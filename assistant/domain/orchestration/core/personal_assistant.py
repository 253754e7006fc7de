"""The per-user assistant actor.

One instance serves one user key. The host guarantees that calls into an
instance never overlap and that ``activate`` has finished before any event is
delivered, so the actor mutates its state without further locking.
"""

from typing import Dict, Any, List, Optional, Callable, Iterable
from dataclasses import dataclass
import json

import structlog

from assistant.application.websocket.connection_manager import ConnectionRegistry, RegistrationOutcome
from assistant.application.websocket.schema.events import (
    ChatMessage,
    ChatResponseEvent,
    CompleteTaskRequest,
    ConnectedEvent,
    CreateTaskRequest,
    DeleteTaskRequest,
    ErrorEvent,
    InboundEvent,
    ListTasksRequest,
    OutboundEvent,
    PingMessage,
    PongEvent,
    TaskDeletedEvent,
    TaskEvent,
    TasksListEvent,
    UpdateTaskRequest,
    parse_inbound,
)
from assistant.domain.context.context_manager import ContextManager, ContextOptions
from assistant.domain.context.context_retriever import ContextRetriever
from assistant.domain.context.prompts import DEFAULT_SYSTEM_PROMPT
from assistant.domain.context.state.state_manager import StateManager
from assistant.domain.errors import (
    AssistantError,
    BackendRateLimitedError,
    CompletionTimeoutError,
    ConflictError,
    InvalidMessageError,
    SessionLostError,
    TransientBackendError,
    ValidationError,
)
from assistant.domain.models.agent_state import ActorState, Message, MessageRole, Session, now_ms
from assistant.domain.tool.rate_limiter import RateLimiter
from assistant.domain.tool.tool_executor import ToolExecutor, format_tool_result, parse_tool_call
from assistant.domain.tool.tool_registry import ToolContext
from assistant.infrastructure.llm.completion import CompletionBackend
from assistant.infrastructure.observability.logging import agent_logger
from assistant.infrastructure.persistence.conversation_log import ConversationLog
from .task_service import TaskService

logger = structlog.get_logger(__name__)

TIMEOUT_REPLY = "I apologize, but my response took too long. Please try again."
HIGH_DEMAND_REPLY = "I am experiencing high demand. Please try again in a moment."
ERROR_REPLY = "I encountered an error processing your message. Please try again."


@dataclass
class AgentConfig:
    """Per-actor tuning knobs"""
    context_max_tokens: int = 3500
    context_max_messages: int = 50
    history_limit: int = 50
    llm_max_tokens: int = 500
    llm_temperature: float = 0.7
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    email_rate_limit_calls: int = 10
    email_rate_limit_window_ms: int = 60 * 60 * 1000


@dataclass
class AgentDependencies:
    """Collaborators shared by every actor in the process"""
    state_manager: StateManager
    conversation_log: ConversationLog
    task_service: TaskService
    completion: CompletionBackend
    context_manager: ContextManager
    tool_executor: ToolExecutor
    rate_limiter: RateLimiter
    retriever: Optional[ContextRetriever] = None
    email_client: Optional[Any] = None


class PersonalAssistant:
    """Conversational actor bound to a single user"""

    def __init__(
        self,
        actor_key: str,
        deps: AgentDependencies,
        config: Optional[AgentConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.actor_key = actor_key
        self.deps = deps
        self.config = config or AgentConfig()
        self._clock = clock or now_ms
        self.state = ActorState(last_activity=self._clock())
        self.registry = ConnectionRegistry(clock=self._clock)
        self.activated = False

    # ==================== Lifecycle ====================

    async def activate(self, live_handles: Iterable[Any] = ()) -> None:
        """Load durable state, refresh history from the log, then rebuild sessions"""

        stored = await self.deps.state_manager.load(self.actor_key)
        if stored is not None:
            self.state = stored
            if self.state.user_id:
                self.state.conversation_history = await self.deps.conversation_log.load_history(
                    self.state.user_id, limit=self.config.history_limit
                )

        self.registry = ConnectionRegistry(user_id=self.state.user_id, clock=self._clock)
        self.registry.rebuild(live_handles)
        self.state.active_web_sockets = self.registry.active_count
        self.activated = True

        logger.info(
            "Actor activated",
            actor_key=self.actor_key,
            user_id=self.state.user_id,
            restored=stored is not None,
            sessions=self.registry.active_count,
            history=len(self.state.conversation_history),
        )

    async def connect(self, handle: Any, claimed_user_id: str) -> str:
        """Admit a connection; a user mismatch raises before the socket is accepted"""

        canonical, outcome = self.registry.register(handle, claimed_user_id)
        if outcome == RegistrationOutcome.CONFLICT:
            raise ConflictError("Connection attempted with a different userId than this agent handles")

        try:
            await handle.accept()
        except Exception:
            self.registry.unregister(handle)
            raise

        self.state.user_id = canonical
        self.state.active_web_sockets = self.registry.active_count
        self.state.last_activity = self._clock()
        await self._save()

        await self._send(handle, ConnectedEvent(user_id=canonical, timestamp=self._clock()))
        return canonical

    async def handle_close(self, handle: Any) -> None:
        self.registry.unregister(handle)
        self.state.active_web_sockets = self.registry.active_count
        await self._save()

    def absorb(self, message: Message) -> None:
        """Fold a message written by a background workflow into the cached history"""

        if any(m.id == message.id for m in self.state.conversation_history):
            return
        self.state.append_message(message, self.config.history_limit)
        self.state.conversation_history.sort(key=lambda m: m.timestamp)

    # ==================== Inbound messages ====================

    async def handle_message(self, handle: Any, raw: Any) -> None:
        """Process one inbound frame, then persist state"""

        session = self.registry.resolve(handle)
        if session is None:
            error = SessionLostError("Session lost")
            await self._send(handle, ErrorEvent(
                error=error.message,
                code=error.code,
                details="Please reconnect to restore your session",
                timestamp=self._clock(),
            ))
            return

        self.state.active_web_sockets = self.registry.active_count

        try:
            event = parse_inbound(self._decode(raw))
            await self._dispatch(handle, session, event)
        except AssistantError as e:
            logger.info("Request rejected", user_id=session.user_id, code=e.code, error=e.message)
            await self._send(handle, ErrorEvent(error=e.message, code=e.code, timestamp=self._clock()))
        except Exception as e:
            logger.exception("Error handling message", user_id=session.user_id)
            await self._send(handle, ErrorEvent(
                error="Internal error processing message",
                code="INTERNAL_ERROR",
                details=str(e),
                timestamp=self._clock(),
            ))

        self.state.last_activity = self._clock()
        await self._save()

    @staticmethod
    def _decode(raw: Any) -> Any:
        if not isinstance(raw, str):
            raise InvalidMessageError("Invalid message format")
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            raise InvalidMessageError("Invalid message format")

    async def _dispatch(self, handle: Any, session: Session, event: InboundEvent) -> None:
        user_id = session.user_id
        tasks = self.deps.task_service

        if isinstance(event, ChatMessage):
            await self._handle_chat(handle, user_id, event.content)

        elif isinstance(event, CreateTaskRequest):
            task = await tasks.create_task(
                user_id, event.title, event.description, event.due_date, event.priority
            )
            await self._send(handle, TaskEvent(type="task_created", task=task.to_wire(), timestamp=self._clock()))

        elif isinstance(event, ListTasksRequest):
            task_list = await tasks.list_tasks(user_id, completed=event.completed)
            await self._send(handle, TasksListEvent(
                tasks=[task.to_wire() for task in task_list],
                count=len(task_list),
                timestamp=self._clock(),
            ))

        elif isinstance(event, CompleteTaskRequest):
            task = await tasks.complete_task(user_id, event.task_id)
            await self._send(handle, TaskEvent(type="task_completed", task=task.to_wire(), timestamp=self._clock()))

        elif isinstance(event, UpdateTaskRequest):
            task = await tasks.update_task(user_id, event.task_id, event.updates())
            await self._send(handle, TaskEvent(type="task_updated", task=task.to_wire(), timestamp=self._clock()))

        elif isinstance(event, DeleteTaskRequest):
            task_id = await tasks.delete_task(user_id, event.task_id)
            await self._send(handle, TaskDeletedEvent(task_id=task_id, timestamp=self._clock()))

        elif isinstance(event, PingMessage):
            await self._send(handle, PongEvent(timestamp=self._clock()))

    # ==================== Chat ====================

    async def _handle_chat(self, handle: Any, user_id: str, content: Optional[str]) -> None:
        if not content or not content.strip():
            raise ValidationError("content is required")

        await self.deps.task_service.users.ensure_user(user_id)

        user_message = Message(role=MessageRole.USER, content=content, timestamp=self._next_timestamp())
        await self._record(user_id, user_message)

        reply = await self.generate_response(user_id, content)

        assistant_message = Message(role=MessageRole.ASSISTANT, content=reply, timestamp=self._next_timestamp())
        await self._record(user_id, assistant_message)

        await self._send(handle, ChatResponseEvent(content=reply, timestamp=self._clock()))

    async def generate_response(self, user_id: str, query: str) -> str:
        """Retrieve, assemble a bounded prompt and complete; failures become canned replies"""

        snippets: List[str] = []
        if self.deps.retriever is not None:
            snippets = await self.deps.retriever.retrieve_relevant_context(user_id, query)

        options = ContextOptions(
            max_tokens=self.config.context_max_tokens,
            max_messages=self.config.context_max_messages,
            system_prompt=self.config.system_prompt,
        )
        context = self.deps.context_manager.prepare_with_retrieval(
            self.state.conversation_history, snippets, options
        )
        agent_logger.log_context_update(
            user_id,
            "rag" if snippets else "history",
            "build",
            {"total_tokens": context.total_tokens, "truncated": context.truncated, "messages": len(context.messages)},
        )

        messages = ContextManager.format_for_model(context)

        try:
            text = await self._complete(messages)
            call = parse_tool_call(text)
            if call is not None:
                text = await self._run_tool_round(user_id, messages, text, call)
            return text
        except CompletionTimeoutError:
            logger.warning("Completion timed out", user_id=user_id)
            return TIMEOUT_REPLY
        except BackendRateLimitedError:
            logger.warning("Completion rate limited", user_id=user_id)
            return HIGH_DEMAND_REPLY
        except TransientBackendError as e:
            logger.error("Completion failed", user_id=user_id, error=e.message)
            return ERROR_REPLY

    async def _run_tool_round(self, user_id: str, messages: List[Dict[str, str]], text: str, call) -> str:
        """Run one tool call and ask the model once more with its result"""

        context = ToolContext(
            user_id=user_id,
            task_service=self.deps.task_service,
            rate_limiter=self.deps.rate_limiter,
            email_client=self.deps.email_client,
            email_rate_limit_calls=self.config.email_rate_limit_calls,
            email_rate_limit_window_ms=self.config.email_rate_limit_window_ms,
        )
        result = await self.deps.tool_executor.execute(call, context)

        tool_message = Message(
            role=MessageRole.SYSTEM,
            content=format_tool_result(call.name, result),
            timestamp=self._next_timestamp(),
            metadata={"type": "tool_result", "tool": call.name, "success": result.success},
        )
        await self._record(user_id, tool_message)

        follow_up = messages + [
            {"role": MessageRole.ASSISTANT.value, "content": text},
            {"role": MessageRole.SYSTEM.value, "content": tool_message.content},
        ]
        return await self._complete(follow_up)

    async def _complete(self, messages: List[Dict[str, str]]) -> str:
        return await self.deps.completion.complete(
            messages,
            max_tokens=self.config.llm_max_tokens,
            temperature=self.config.llm_temperature,
        )

    # ==================== Helpers ====================

    async def _record(self, user_id: str, message: Message) -> None:
        """Append to the working set, the durable log and the retrieval index"""

        self.state.append_message(message, self.config.history_limit)
        await self.deps.conversation_log.append(user_id, message)
        if self.deps.retriever is not None and message.role != MessageRole.SYSTEM:
            await self.deps.retriever.remember(user_id, message)

    def _next_timestamp(self) -> int:
        # Strictly increasing so history order never depends on id tiebreaks
        now = self._clock()
        if self.state.conversation_history:
            now = max(now, self.state.conversation_history[-1].timestamp + 1)
        return now

    async def _save(self) -> None:
        await self.deps.state_manager.save(self.actor_key, self.state)

    async def _send(self, handle: Any, event: OutboundEvent) -> None:
        try:
            await handle.send_json(event.to_wire())
        except Exception as e:
            # The close handler cleans up the registry
            logger.warning("Failed to send event", actor_key=self.actor_key, type=event.type, error=str(e))

    @property
    def sessions(self) -> List[Session]:
        return list(self.registry.sessions.values())
