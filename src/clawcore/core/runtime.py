"""
Explicit construction of the service graph.

Everything is built once here and passed by constructor. Tests substitute the
router, embedder and vector index; the CLI uses the production defaults.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from ..llm.router import ProviderRouter, build_default_router
from ..memory.crypto import FieldCipher
from ..memory.embeddings import Embedder, LiteLLMEmbedder
from ..memory.store import MemoryStore
from ..memory.vector_index import ChromaVectorIndex, NullVectorIndex, VectorIndex
from ..tools.builtin import register_core_tools
from ..tools.registry import ToolRegistry
from ..utils.background import BackgroundTasks
from ..utils.logging import get_logger
from .act import ToolExecutor
from .agent import AgentLoop
from .config import ClawConfig, ResolvedCredentials, resolve_credentials
from .context import ContextAssembler
from .jobs import Notifier, ScheduledJobs
from .persistence import Database
from .proactive import ProactiveMonitor
from .reflector import Reflector
from .status import StatusReporter
from .swarm import SwarmManager
from .workflows import WorkflowEngine

logger = get_logger(__name__)


@dataclass
class Runtime:
    config: ClawConfig
    credentials: ResolvedCredentials
    db: Database
    background: BackgroundTasks
    router: ProviderRouter
    memory: MemoryStore
    registry: ToolRegistry
    executor: ToolExecutor
    swarm: SwarmManager
    reflector: Reflector
    workflows: WorkflowEngine
    proactive: ProactiveMonitor
    status: StatusReporter
    agent: AgentLoop
    jobs: ScheduledJobs

    async def shutdown(self, timeout: float | None = None) -> None:
        """Let background work finish, then close storage."""
        try:
            await self.background.drain(timeout)
        finally:
            self.db.close()


def _embedding_key(model: str, credentials: ResolvedCredentials) -> str | None:
    if model.startswith("gemini/"):
        return credentials.gemini
    if model.startswith("openrouter/"):
        return credentials.openrouter
    return credentials.openai


def build_runtime(
    config: ClawConfig,
    env: Mapping[str, str] | None = None,
    router: ProviderRouter | None = None,
    embedder: Embedder | None = None,
    vector_index: VectorIndex | None = None,
    notifier: Notifier | None = None,
) -> Runtime:
    """
    Wire every service object.

    Raises:
        PersistenceError: Schema initialization failed
    """
    credentials = resolve_credentials(env, config)
    db = Database(config.db_path)
    db.initialize()

    background = BackgroundTasks()
    router = router or build_default_router(config, credentials)
    embedder = embedder or LiteLLMEmbedder(
        config.embedding_model,
        api_key=_embedding_key(config.embedding_model, credentials),
        timeout=config.llm_timeout_seconds,
    )
    if vector_index is None:
        if config.enable_vector_index:
            vector_index = ChromaVectorIndex(config.vector_index_path, collection=config.vector_collection)
        else:
            vector_index = NullVectorIndex()

    memory = MemoryStore(
        db,
        embedder,
        config,
        llm=router,
        vector_index=vector_index,
        cipher=FieldCipher(config.encryption_key),
        background=background,
    )

    registry = ToolRegistry()
    executor = ToolExecutor(registry, timeout_seconds=config.tool_timeout_seconds)
    swarm = SwarmManager(router, executor, registry, memory, config, background)
    reflector = Reflector(db, router, memory)
    workflows = WorkflowEngine(
        db,
        router,
        swarm,
        memory,
        reflector=reflector,
        background=background,
        rich_output=config.enable_rich_console,
    )
    register_core_tools(registry, swarm, workflows, reflector, background)

    proactive = ProactiveMonitor(router, swarm, memory, config)
    status = StatusReporter(config.db_path, router.active_providers, env=env)
    agent = AgentLoop(
        router,
        executor,
        registry,
        memory,
        config,
        context_assembler=ContextAssembler(memory, history_limit=config.context_message_limit),
        status_reporter=status,
        proactive=proactive,
        background=background,
    )
    jobs = ScheduledJobs(agent, memory, proactive, config, notifier=notifier)

    logger.info(
        "runtime_ready",
        providers=router.active_providers(),
        tools=registry.list_tools(),
        vector_index=type(vector_index).__name__,
        encrypted=config.encryption_key is not None,
    )
    return Runtime(
        config=config,
        credentials=credentials,
        db=db,
        background=background,
        router=router,
        memory=memory,
        registry=registry,
        executor=executor,
        swarm=swarm,
        reflector=reflector,
        workflows=workflows,
        proactive=proactive,
        status=status,
        agent=agent,
        jobs=jobs,
    )
