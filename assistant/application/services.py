from typing import Optional
from dataclasses import dataclass

import httpx
import structlog
from langchain_core.language_models import BaseChatModel

from assistant.application.websocket.actor_host import ActorHost
from assistant.domain.context.context_manager import ContextManager
from assistant.domain.context.context_ranker import ContextRanker
from assistant.domain.context.context_retriever import ContextRetriever
from assistant.domain.context.memory.vector_memory_store import VectorMemoryStore
from assistant.domain.context.state.state_manager import StateManager
from assistant.domain.models.agent_state import Message
from assistant.domain.orchestration.core.personal_assistant import (
    AgentConfig,
    AgentDependencies,
    PersonalAssistant,
)
from assistant.domain.orchestration.core.task_service import TaskService
from assistant.domain.orchestration.workflow.scheduler import WorkflowScheduler
from assistant.domain.orchestration.workflow.step_engine import RetryPolicy, StepWorkflowEngine
from assistant.domain.orchestration.workflow.task_workflow import TaskWorkflow
from assistant.domain.tool.email_tool import PostmarkClient
from assistant.domain.tool.rate_limiter import RateLimiter
from assistant.domain.tool.task_tools import create_default_registry
from assistant.domain.tool.tool_executor import ToolExecutor
from assistant.infrastructure.config.settings import AssistantSettings
from assistant.infrastructure.llm.completion import ChatModelCompletion, create_chat_model
from assistant.infrastructure.persistence.actor_state_repository import ActorStateRepository
from assistant.infrastructure.persistence.conversation_log import ConversationLog
from assistant.infrastructure.persistence.database import Database
from assistant.infrastructure.persistence.task_repository import TaskRepository
from assistant.infrastructure.persistence.user_repository import UserRepository
from assistant.infrastructure.persistence.workflow_store import WorkflowStore

logger = structlog.get_logger(__name__)


@dataclass
class AssistantServices:
    """Process-wide collaborators owned by the application"""
    settings: AssistantSettings
    database: Database
    users: UserRepository
    tasks: TaskRepository
    conversation_log: ConversationLog
    workflow_store: WorkflowStore
    scheduler: WorkflowScheduler
    task_service: TaskService
    state_manager: StateManager
    actor_host: ActorHost
    email_client: PostmarkClient

    async def start(self) -> None:
        await self.database.create_all()
        resumed = await self.scheduler.start()
        self.actor_host.start()
        logger.info("Assistant services started", resumed_workflows=resumed)

    async def stop(self) -> None:
        await self.actor_host.stop()
        await self.scheduler.stop()
        await self.email_client.aclose()
        await self.database.dispose()
        logger.info("Assistant services stopped")


def _build_chat_model(settings: AssistantSettings) -> Optional[BaseChatModel]:
    try:
        return create_chat_model(
            settings.llm_model,
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
        )
    except Exception as e:
        # Chat degrades to canned error replies; tasks and workflows keep working
        logger.error("Language model unavailable", model=settings.llm_model, error=str(e))
        return None


def build_services(
    settings: AssistantSettings,
    chat_model: Optional[BaseChatModel] = None,
    email_http_client: Optional[httpx.AsyncClient] = None,
) -> AssistantServices:
    """Wire repositories, workflows and the actor host from settings"""

    database = Database(settings.database_url, echo=settings.sql_echo)
    users = UserRepository(database)
    tasks = TaskRepository(database)
    conversation_log = ConversationLog(database)
    workflow_store = WorkflowStore(database)

    actor_host: Optional[ActorHost] = None

    async def notify_actor(user_id: str, message: Message) -> None:
        if actor_host is not None:
            await actor_host.deliver_system_message(user_id, message)

    workflow = TaskWorkflow(tasks, conversation_log, notifier=notify_actor)
    engine = StepWorkflowEngine(
        workflow_store,
        workflow,
        retry_policy=RetryPolicy(
            max_attempts=settings.workflow_max_attempts,
            backoff_seconds=settings.workflow_backoff_seconds,
        ),
    )
    scheduler = WorkflowScheduler(engine, workflow_store)
    task_service = TaskService(tasks, users, scheduler)
    state_manager = StateManager(ActorStateRepository(database), history_limit=settings.history_limit)

    email_client = PostmarkClient(
        settings.postmark_api_key,
        settings.postmark_from_email,
        api_url=settings.postmark_api_url,
        http_client=email_http_client,
    )

    deps = AgentDependencies(
        state_manager=state_manager,
        conversation_log=conversation_log,
        task_service=task_service,
        completion=ChatModelCompletion(
            chat_model if chat_model is not None else _build_chat_model(settings),
            timeout_seconds=settings.llm_timeout_seconds,
        ),
        context_manager=ContextManager(),
        tool_executor=ToolExecutor(create_default_registry()),
        rate_limiter=RateLimiter(),
        retriever=ContextRetriever(
            VectorMemoryStore(ContextRanker()),
            top_k=settings.rag_top_k,
            enabled=settings.rag_enabled,
        ),
        email_client=email_client,
    )
    config = AgentConfig(
        context_max_tokens=settings.context_max_tokens,
        context_max_messages=settings.context_max_messages,
        history_limit=settings.history_limit,
        llm_max_tokens=settings.llm_max_tokens,
        llm_temperature=settings.llm_temperature,
        email_rate_limit_calls=settings.email_rate_limit_calls,
        email_rate_limit_window_ms=settings.email_rate_limit_window_ms,
    )

    actor_host = ActorHost(
        lambda key: PersonalAssistant(key, deps, config),
        idle_seconds=settings.actor_idle_seconds,
        sweep_interval_seconds=settings.actor_sweep_interval_seconds,
    )

    return AssistantServices(
        settings=settings,
        database=database,
        users=users,
        tasks=tasks,
        conversation_log=conversation_log,
        workflow_store=workflow_store,
        scheduler=scheduler,
        task_service=task_service,
        state_manager=state_manager,
        actor_host=actor_host,
        email_client=email_client,
    )
