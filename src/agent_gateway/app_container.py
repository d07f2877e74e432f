import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from agent_gateway.config import GatewayConfig, load_config
from agent_gateway.execution.docker_runner import DockerContainerRunner
from agent_gateway.execution.mcp_config import McpConfigLoader
from agent_gateway.persistence.session_store import SessionStore
from agent_gateway.services.artifact_cache import CACHE_SWEEP_INTERVAL_SEC, ArtifactCache
from agent_gateway.services.chat_dispatch import ChatDispatcher, CompletionNotifier
from agent_gateway.services.credentials import CredentialResolver
from agent_gateway.services.operation_tracker import TRACKER_SWEEP_INTERVAL_SEC, OperationTracker
from agent_gateway.services.orchestrator import ExecutionOrchestrator
from agent_gateway.services.session_retention import SESSION_SWEEP_INTERVAL_SEC, SessionRetentionPolicy
from agent_gateway.services.sweeper import PeriodicSweeper

logger = logging.getLogger(__name__)


@dataclass
class GatewayContainer:
    config: GatewayConfig
    credentials: CredentialResolver
    store: SessionStore
    retention: SessionRetentionPolicy
    docker: DockerContainerRunner
    orchestrator: ExecutionOrchestrator
    tracker: OperationTracker
    prompt_cache: ArtifactCache
    response_cache: ArtifactCache
    sweepers: List[PeriodicSweeper] = field(default_factory=list)
    dispatcher: Optional[ChatDispatcher] = None

    async def start_background(self) -> None:
        for sweeper in self.sweepers:
            await sweeper.start()
        logger.info("Started %d background sweepers", len(self.sweepers))

    async def stop_background(self) -> None:
        for sweeper in self.sweepers:
            await sweeper.stop()


def build_container(
    config: Optional[GatewayConfig] = None,
    environ: Optional[Mapping[str, str]] = None,
    notifier: Optional[CompletionNotifier] = None,
) -> GatewayContainer:
    """Wire every service. Chat dispatch is available only when the host
    supplies a ``notifier`` for delivering completions.
    """
    cfg = config or load_config(environ)
    credentials = CredentialResolver(secrets_dir=cfg.secrets_dir, environ=environ)
    store = SessionStore(cfg.sessions_dir, retention_days=cfg.retention_days)
    retention = SessionRetentionPolicy(store)
    docker = DockerContainerRunner(cfg)
    orchestrator = ExecutionOrchestrator(
        config=cfg,
        store=store,
        credentials=credentials,
        docker=docker,
        mcp_loader=McpConfigLoader(cfg.mcp_template_path, cfg.mcp_config_path, environ=environ),
    )
    tracker = OperationTracker()
    prompt_cache = ArtifactCache("prompts")
    response_cache = ArtifactCache("responses")
    dispatcher = None
    if notifier is not None:
        dispatcher = ChatDispatcher(
            orchestrator=orchestrator,
            tracker=tracker,
            notifier=notifier,
            base_url=cfg.base_url,
            prompt_cache=prompt_cache,
            response_cache=response_cache,
        )
    sweepers = [
        PeriodicSweeper("sessions", SESSION_SWEEP_INTERVAL_SEC, retention.apply),
        PeriodicSweeper("operations", TRACKER_SWEEP_INTERVAL_SEC, tracker.cleanup),
        PeriodicSweeper("prompt-cache", CACHE_SWEEP_INTERVAL_SEC, prompt_cache.cleanup),
        PeriodicSweeper("response-cache", CACHE_SWEEP_INTERVAL_SEC, response_cache.cleanup),
    ]
    logger.info(
        "Gateway container ready: image=%s sessions=%s retention_days=%d test_mode=%s chat=%s",
        cfg.image,
        store.root,
        store.retention_days,
        cfg.test_mode,
        dispatcher is not None,
    )
    return GatewayContainer(
        config=cfg,
        credentials=credentials,
        store=store,
        retention=retention,
        docker=docker,
        orchestrator=orchestrator,
        tracker=tracker,
        prompt_cache=prompt_cache,
        response_cache=response_cache,
        sweepers=sweepers,
        dispatcher=dispatcher,
    )
