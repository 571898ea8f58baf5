"""Service container wiring application components."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from atelier.config import AppSettings
from atelier.domain import AssetId
from atelier.orchestration import (
    ArtifactCatalog,
    ArtifactStore,
    BatchDownloadEngine,
    FileMaterializer,
    GenerationPipeline,
    JobSubmitter,
    LoggingObserver,
    PlaceholderTracker,
    PrecacheGate,
    QuoteController,
    RetryController,
    RetryPolicy,
)
from atelier.persistence.sqlite import create_sqlite_unit_of_work_factory
from atelier.providers import (
    GenerationBackend,
    HttpGenerationBackend,
    ProfileRegistry,
    SimulatedGenerationBackend,
    default_registry,
)
from atelier.recovery import RecoveryLog, UnitOfWorkFactory
from atelier.transport import TransportLease

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceContainer:
    """Aggregates the pipeline services built from one set of settings."""

    settings: AppSettings
    backend: GenerationBackend
    profile_registry: ProfileRegistry
    unit_of_work_factory: UnitOfWorkFactory
    recovery_log: RecoveryLog
    transport: TransportLease
    retry_policy: RetryPolicy
    observer: LoggingObserver
    placeholders: PlaceholderTracker
    artifact_store: ArtifactStore
    materializer: FileMaterializer
    quote_controller: QuoteController
    job_submitter: JobSubmitter
    download_engine: BatchDownloadEngine
    retry_controller: RetryController
    precache_gate: PrecacheGate
    pipeline: GenerationPipeline


def _ensure_sqlite_directory(database_url: str) -> None:
    if not database_url.startswith("sqlite"):
        return
    try:
        _, path = database_url.split(":///", maxsplit=1)
    except ValueError:
        return
    db_path = Path(path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)


def _asset_name_valid(asset: AssetId) -> bool:
    return bool(str(asset).strip())


def build_backend(settings: AppSettings) -> GenerationBackend:
    if settings.api_key:
        return HttpGenerationBackend(api_key=settings.api_key, environment=settings.environment)
    if settings.enable_local_fallback:
        logger.info("No API key configured, using the simulated backend")
        return SimulatedGenerationBackend(
            environment=settings.environment, latency=settings.simulated_latency
        )
    return HttpGenerationBackend(api_key=None, environment=settings.environment)


def build_container(settings: AppSettings | None = None) -> ServiceContainer:
    """Construct the primary service container."""

    resolved_settings = settings or AppSettings.from_env()
    artifacts_root: Path = resolved_settings.artifacts_root.expanduser().resolve()
    artifacts_root.mkdir(parents=True, exist_ok=True)
    workspace_root = resolved_settings.workspace_root.expanduser().resolve()

    backend = build_backend(resolved_settings)
    registry = default_registry()

    _ensure_sqlite_directory(resolved_settings.database_url)
    unit_of_work_factory = create_sqlite_unit_of_work_factory(resolved_settings.database_url)
    recovery_log = RecoveryLog(unit_of_work_factory, environment=resolved_settings.environment)
    transport = TransportLease(
        base_url=resolved_settings.api_base, timeout=resolved_settings.transport_timeout
    )
    policy = RetryPolicy.from_settings(resolved_settings)
    observer = LoggingObserver()
    placeholders = PlaceholderTracker()
    store = ArtifactStore(artifacts_root, backend, registry)
    materializer = FileMaterializer(workspace_root)

    quote_controller = QuoteController(
        backend,
        transport,
        registry,
        observer=observer,
        asset_exists=_asset_name_valid,
        quote_timeout=resolved_settings.quote_timeout,
    )
    job_submitter = JobSubmitter(
        backend,
        transport,
        registry,
        recovery_log,
        placeholders,
        gate=observer,
        progress=observer,
        messages=observer,
        generate_timeout=resolved_settings.generate_timeout,
    )
    download_engine = BatchDownloadEngine(
        backend, transport, recovery_log, policy, messages=observer
    )
    retry_controller = RetryController(
        download_engine,
        recovery_log,
        store,
        placeholders,
        transport,
        policy,
        registry,
        materializer=materializer,
        progress=observer,
        messages=observer,
    )
    precache_gate = PrecacheGate(artifacts_root, timeout=resolved_settings.precache_timeout)
    pipeline = GenerationPipeline(
        quote_controller,
        job_submitter,
        retry_controller,
        recovery_log,
        placeholders,
        precache_gate,
        catalog=ArtifactCatalog(),
    )

    return ServiceContainer(
        settings=resolved_settings,
        backend=backend,
        profile_registry=registry,
        unit_of_work_factory=unit_of_work_factory,
        recovery_log=recovery_log,
        transport=transport,
        retry_policy=policy,
        observer=observer,
        placeholders=placeholders,
        artifact_store=store,
        materializer=materializer,
        quote_controller=quote_controller,
        job_submitter=job_submitter,
        download_engine=download_engine,
        retry_controller=retry_controller,
        precache_gate=precache_gate,
        pipeline=pipeline,
    )


__all__ = ["ServiceContainer", "build_backend", "build_container"]
