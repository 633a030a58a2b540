"""Explicit construction and teardown of the service graph."""

from dataclasses import dataclass
from functools import partial
from typing import Optional

from fastapi import Request

from switchboard.config import Settings
from switchboard.logging_config import get_logger
from switchboard.repositories.base import (
    AgentRepository,
    ChannelRepository,
    ConversationRepository,
    MessageRepository,
    ParametersRepository,
)
from switchboard.services.agent_matching_service import AgentMatcher
from switchboard.services.auth_session_service import AuthSessionManager
from switchboard.services.cache_store import CacheStore, build_cache_store
from switchboard.services.channel_runtime import ChannelRuntime
from switchboard.services.conversation_service import ConversationResolver
from switchboard.services.drivers import build_driver
from switchboard.services.events import EventBus
from switchboard.services.firewall import ConversationalFirewall, FirewallConfig
from switchboard.services.intent_service import IntentionClassifier
from switchboard.services.llm import LLMProvider, OpenAIProvider
from switchboard.services.message_router import MessageRouter
from switchboard.services.message_service import MessageIngestion
from switchboard.services.orchestrator import ConversationOrchestrator
from switchboard.services.pairing_service import PairingService
from switchboard.services.qr_service import QRCodeStorage
from switchboard.services.workflow import FlowRegistry, StepExecutor, StepFactory, WorkflowEngine
from switchboard.services.workflow.flows import register_default_flows

logger = get_logger("container")


@dataclass
class Repositories:
    channels: ChannelRepository
    conversations: ConversationRepository
    messages: MessageRepository
    parameters: ParametersRepository
    agents: AgentRepository


@dataclass
class Container:
    settings: Settings
    cache: CacheStore
    events: EventBus
    repositories: Repositories
    firewall: ConversationalFirewall
    auth_sessions: AuthSessionManager
    runtime: ChannelRuntime
    classifier: IntentionClassifier
    matcher: AgentMatcher
    workflow: WorkflowEngine
    orchestrator: ConversationOrchestrator
    router: MessageRouter
    pairing: PairingService

    async def shutdown(self) -> None:
        errors = await self.runtime.shutdown()
        self.auth_sessions.shutdown()
        try:
            await self.cache.close()
        except Exception as e:
            logger.warning(f"Cache close failed: {e}")
        logger.info("Container shut down", extra={"context": {"channel_errors": len(errors)}})


def build_sql_repositories() -> Repositories:
    from switchboard.database import SessionLocal
    from switchboard.repositories.sql import (
        SqlAgentRepository,
        SqlChannelRepository,
        SqlConversationRepository,
        SqlMessageRepository,
        SqlParametersRepository,
    )

    return Repositories(
        channels=SqlChannelRepository(SessionLocal),
        conversations=SqlConversationRepository(SessionLocal),
        messages=SqlMessageRepository(SessionLocal),
        parameters=SqlParametersRepository(SessionLocal),
        agents=SqlAgentRepository(SessionLocal),
    )


def build_container(
    settings: Settings,
    *,
    repositories: Optional[Repositories] = None,
    cache: Optional[CacheStore] = None,
    llm: Optional[LLMProvider] = None,
    driver_factory=None,
) -> Container:
    repositories = repositories or build_sql_repositories()
    cache = cache or build_cache_store(
        settings.cache_backend, settings.redis_url, socket_timeout=settings.redis_socket_timeout_seconds
    )
    if llm is None and settings.openai_api_key:
        llm = OpenAIProvider(settings.openai_api_key, default_model=settings.openai_model)
    if llm is None:
        logger.warning("No LLM configured; classification uses the keyword heuristic only")

    bus = EventBus()
    qr_storage = QRCodeStorage(settings.qr_public_dir, settings.qr_public_url_prefix)
    auth_sessions = AuthSessionManager(
        cache,
        ttl_minutes=settings.auth_session_ttl_minutes,
        grace_seconds=settings.auth_session_grace_seconds,
        qr_storage=qr_storage,
    )
    runtime = ChannelRuntime(
        repositories.channels,
        auth_sessions,
        bus,
        driver_factory or partial(build_driver, settings=settings),
        debounce_seconds=settings.debounce_seconds,
        restart_pause_seconds=settings.restart_pause_seconds,
        shutdown_timeout_seconds=settings.shutdown_timeout_seconds,
    )

    firewall = ConversationalFirewall(cache, FirewallConfig.from_settings(settings))
    classifier = IntentionClassifier(
        repositories.messages,
        repositories.parameters,
        cache,
        llm,
        history_limit=settings.intent_history_limit,
        ai_timeout_seconds=settings.ai_timeout_seconds,
        cache_ttl_seconds=settings.intent_cache_ttl_seconds,
    )
    matcher = AgentMatcher(
        repositories.agents,
        repositories.conversations,
        repositories.channels,
        cache,
        load_ttl_seconds=settings.agent_load_ttl_seconds,
        max_candidates=settings.agent_max_candidates,
    )

    registry = FlowRegistry()
    register_default_flows(registry, StepFactory(llm))
    workflow = WorkflowEngine(
        repositories.conversations,
        repositories.parameters,
        registry,
        StepExecutor(),
        sender=runtime,
    )
    orchestrator = ConversationOrchestrator(
        classifier, matcher, workflow, repositories.conversations, bus, typing=runtime
    )
    router = MessageRouter(
        firewall,
        ConversationResolver(repositories.conversations, cache),
        MessageIngestion(repositories.messages, repositories.conversations, cache),
        orchestrator,
        bus,
        sender=runtime,
    )
    runtime.attach_router(router)

    return Container(
        settings=settings,
        cache=cache,
        events=bus,
        repositories=repositories,
        firewall=firewall,
        auth_sessions=auth_sessions,
        runtime=runtime,
        classifier=classifier,
        matcher=matcher,
        workflow=workflow,
        orchestrator=orchestrator,
        router=router,
        pairing=PairingService(runtime, auth_sessions, qr_storage, repositories.channels),
    )


def get_container(request: Request) -> Container:
    return request.app.state.container
