"""Explicit wiring of the application's components."""

import logging
from dataclasses import dataclass
from typing import Optional

from nasbox.config import Settings, settings as default_settings
from nasbox.database.database import Database
from nasbox.repositories import (
    BackupRecordRepository,
    PlanRepository,
    RunLogRepository,
    RunRepository,
    ServerRepository,
)
from nasbox.services.connection_test_service import ConnectionTestService
from nasbox.services.credential_store import CredentialStore, EncryptedCredentialStore
from nasbox.services.discovery_service import DiscoveryScanner
from nasbox.services.encryption_service import EncryptionService
from nasbox.services.media_source import FilesystemMediaSource, MediaSource
from nasbox.services.path_renderer import PathRenderer
from nasbox.services.plan_service import PlanService
from nasbox.services.recurrence import RecurrenceCalculator
from nasbox.services.run_control import (
    ManualRunService,
    MarkRunInterruptedService,
    PlanRunDispatcher,
    StaleRunReconciler,
    StopRunService,
)
from nasbox.services.run_executor import ActiveRunRegistry, RunExecutor
from nasbox.services.scheduler import AsyncioScheduler, PlanScheduleCoordinator
from nasbox.services.server_service import ServerService
from nasbox.services.share_client import ShareClient, SmbShareClient

logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Everything a running instance needs, built once at startup."""

    settings: Settings
    database: Database
    plan_repository: PlanRepository
    server_repository: ServerRepository
    backup_record_repository: BackupRecordRepository
    run_repository: RunRepository
    run_log_repository: RunLogRepository
    credential_store: CredentialStore
    media_source: MediaSource
    share_client: ShareClient
    registry: ActiveRunRegistry
    scheduler: AsyncioScheduler
    coordinator: PlanScheduleCoordinator
    executor: RunExecutor
    manual_runs: ManualRunService
    stop_runs: StopRunService
    stale_runs: StaleRunReconciler
    connection_tests: ConnectionTestService
    server_service: ServerService
    plan_service: PlanService
    discovery: DiscoveryScanner

    @classmethod
    def build(
        cls,
        app_settings: Optional[Settings] = None,
        database: Optional[Database] = None,
        encryption_service: Optional[EncryptionService] = None,
        media_source: Optional[MediaSource] = None,
        share_client: Optional[ShareClient] = None,
        discovery: Optional[DiscoveryScanner] = None
    ) -> "AppContainer":
        """Construct and wire all components.

        Collaborators that touch the outside world can be passed in; tests
        use this to swap in fakes.
        """
        app_settings = app_settings or default_settings
        database = database or Database(app_settings.database_url)
        session_factory = database.session_factory

        plan_repository = PlanRepository(session_factory)
        server_repository = ServerRepository(session_factory)
        backup_record_repository = BackupRecordRepository(session_factory)
        run_repository = RunRepository(session_factory)
        run_log_repository = RunLogRepository(session_factory)

        credential_store = EncryptedCredentialStore(
            session_factory, encryption_service or EncryptionService(app_settings.encryption_key)
        )
        media_source = media_source or FilesystemMediaSource(app_settings.media_root)
        share_client = share_client or SmbShareClient(
            app_settings.smb_port, app_settings.smb_connection_timeout_seconds
        )

        registry = ActiveRunRegistry()
        scheduler = AsyncioScheduler()
        coordinator = PlanScheduleCoordinator(
            plan_repository, scheduler, RecurrenceCalculator(app_settings.time_zone)
        )
        executor = RunExecutor(
            plan_repository=plan_repository,
            server_repository=server_repository,
            credential_store=credential_store,
            backup_record_repository=backup_record_repository,
            run_repository=run_repository,
            run_log_repository=run_log_repository,
            media_source=media_source,
            share_client=share_client,
            path_renderer=PathRenderer(app_settings.device_label),
            registry=registry,
            transfer_timeout=app_settings.smb_transfer_timeout_seconds,
        )
        scheduler.bind(PlanRunDispatcher(executor, plan_repository, registry, coordinator))

        mark_interrupted = MarkRunInterruptedService(run_repository, run_log_repository)

        return cls(
            settings=app_settings,
            database=database,
            plan_repository=plan_repository,
            server_repository=server_repository,
            backup_record_repository=backup_record_repository,
            run_repository=run_repository,
            run_log_repository=run_log_repository,
            credential_store=credential_store,
            media_source=media_source,
            share_client=share_client,
            registry=registry,
            scheduler=scheduler,
            coordinator=coordinator,
            executor=executor,
            manual_runs=ManualRunService(plan_repository, scheduler, registry),
            stop_runs=StopRunService(run_repository, run_log_repository, registry, scheduler),
            stale_runs=StaleRunReconciler(run_repository, scheduler, registry, mark_interrupted),
            connection_tests=ConnectionTestService(server_repository, credential_store, share_client),
            server_service=ServerService(server_repository, credential_store),
            plan_service=PlanService(
                plan_repository, server_repository, backup_record_repository, media_source, coordinator, registry
            ),
            discovery=discovery or DiscoveryScanner(
                port=app_settings.smb_port,
                concurrency=app_settings.discovery_concurrency,
                probe_timeout_ms=app_settings.discovery_probe_timeout_ms,
                fallback_hostnames=app_settings.discovery_hostnames,
            ),
        )

    async def startup(self) -> None:
        """Create tables, interrupt orphaned runs and arm schedules."""
        self.database.init_db()
        self.stale_runs.reconcile()
        if self.settings.scheduler_enabled:
            self.coordinator.reconcile_schedules()
        else:
            logger.info("Scheduler disabled; plan schedules are not armed")

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        self.database.dispose()
