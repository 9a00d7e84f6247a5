"""Backup run orchestration."""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from nasbox.config import settings
from nasbox.database.database import utcnow
from nasbox.models.enums import LogSeverity, RunStatus, SourceType, TriggerSource
from nasbox.repositories.base import DuplicateRecordError
from nasbox.services.credential_store import CredentialStore
from nasbox.services.failure_classifier import classify, describe_error, upload_failure_message
from nasbox.services.media_source import MediaItem, MediaSource, SourceDescriptor
from nasbox.services.path_renderer import PathRenderer, mask_remote_path
from nasbox.services.share_client import ShareClient, ShareConnectionRequest, ShareTimeoutError

logger = logging.getLogger(__name__)

PROGRESS_LOG_INTERVAL = 10
CANCELED_SUMMARY = "Run canceled by user."


class CancellationToken:
    """Cooperative stop signal checked by the executor between items."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class ActiveRunRegistry:
    """Tracks runs currently executing in this process and their cancellation tokens."""

    def __init__(self):
        self._lock = threading.Lock()
        self._tokens: Dict[int, CancellationToken] = {}
        self._plans: Dict[int, int] = {}

    def register(self, run_id: int, plan_id: int, token: CancellationToken) -> None:
        with self._lock:
            self._tokens[run_id] = token
            self._plans[run_id] = plan_id

    def unregister(self, run_id: int) -> None:
        with self._lock:
            self._tokens.pop(run_id, None)
            self._plans.pop(run_id, None)

    def token_for(self, run_id: int) -> Optional[CancellationToken]:
        with self._lock:
            return self._tokens.get(run_id)

    def is_plan_active(self, plan_id: int) -> bool:
        with self._lock:
            return plan_id in self._plans.values()

    def active_run_ids(self) -> List[int]:
        with self._lock:
            return list(self._tokens)

    def cancel_plan(self, plan_id: int) -> List[int]:
        """Signal every active run of a plan; returns their run ids."""
        with self._lock:
            run_ids = [run_id for run_id, owner in self._plans.items() if owner == plan_id]
            for run_id in run_ids:
                self._tokens[run_id].cancel()
        return run_ids


@dataclass(frozen=True)
class RunExecutionResult:
    run_id: int
    status: RunStatus
    scanned_count: int
    uploaded_count: int
    skipped_count: int
    failed_count: int
    summary_error: Optional[str] = None


def derive_status(failed: int, uploaded: int, skipped: int) -> RunStatus:
    """Terminal status from the run counters.

    FAILED only when every attempted item failed and nothing was already
    backed up; PARTIAL for any other failure; SUCCESS otherwise.
    """
    if failed > 0 and uploaded == 0 and skipped == 0:
        return RunStatus.FAILED
    if failed > 0:
        return RunStatus.PARTIAL
    return RunStatus.SUCCESS


class RunJournal:
    """Append-only log of one run.

    Timestamps never go backwards, even if the clock does, so reading logs
    in timestamp order reproduces the append order.
    """

    def __init__(self, run_id: int, plan_id: int, log_repository, clock: Callable[[], datetime] = utcnow):
        self.run_id = run_id
        self.plan_id = plan_id
        self.log_repository = log_repository
        self.clock = clock
        self._last_timestamp: Optional[datetime] = None

    def append(self, severity: LogSeverity, message: str, detail: Optional[str] = None) -> None:
        timestamp = self.clock()
        if self._last_timestamp is not None and timestamp < self._last_timestamp:
            timestamp = self._last_timestamp
        self._last_timestamp = timestamp

        line = f"[run={self.run_id} plan={self.plan_id}] {message}" + (f" | {detail}" if detail else "")
        if severity == LogSeverity.ERROR:
            logger.error(line)
        else:
            logger.info(line)

        self.log_repository.append(self.run_id, severity, message, detail, timestamp=timestamp)

    def info(self, message: str, detail: Optional[str] = None) -> None:
        self.append(LogSeverity.INFO, message, detail)

    def error(self, message: str, detail: Optional[str] = None) -> None:
        self.append(LogSeverity.ERROR, message, detail)


class RunSetupError(Exception):
    """A precondition failed before any item was processed."""

    def __init__(self, summary: str, log_message: str, detail: Optional[str] = None):
        super().__init__(summary)
        self.summary = summary
        self.log_message = log_message
        self.detail = detail


@dataclass
class _RunState:
    run_id: int
    plan_id: int
    journal: RunJournal
    scanned: int = 0
    uploaded: int = 0
    skipped: int = 0
    failed: int = 0
    summary_error: Optional[str] = None
    finalized: bool = False

    def record_failure(self, message: str) -> None:
        self.failed += 1
        if self.summary_error is None:
            self.summary_error = message

    @property
    def processed(self) -> int:
        return self.uploaded + self.skipped + self.failed


class RunExecutor:
    """Executes one backup run of a plan.

    Creates the run, checks its preconditions, scans the source, uploads every
    item that has no backup record yet and finalizes the run exactly once with
    its counts and terminal status.
    """

    def __init__(
        self,
        plan_repository,
        server_repository,
        credential_store: CredentialStore,
        backup_record_repository,
        run_repository,
        run_log_repository,
        media_source: MediaSource,
        share_client: ShareClient,
        path_renderer: Optional[PathRenderer] = None,
        registry: Optional[ActiveRunRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
        transfer_timeout: Optional[float] = None
    ):
        self.plan_repository = plan_repository
        self.server_repository = server_repository
        self.credential_store = credential_store
        self.backup_record_repository = backup_record_repository
        self.run_repository = run_repository
        self.run_log_repository = run_log_repository
        self.media_source = media_source
        self.share_client = share_client
        self.path_renderer = path_renderer or PathRenderer()
        self.registry = registry or ActiveRunRegistry()
        self.clock = clock
        self.transfer_timeout = transfer_timeout or settings.smb_transfer_timeout_seconds

    async def execute(
        self,
        plan_id: int,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
        cancellation: Optional[CancellationToken] = None
    ) -> RunExecutionResult:
        """Run a plan once.

        Args:
            plan_id: Plan to back up.
            trigger_source: MANUAL or SCHEDULED.
            cancellation: Token checked before each item; a new one is made
                when omitted and registered so the run can be stopped.

        Returns:
            RunExecutionResult with the terminal status and counts.
        """
        token = cancellation or CancellationToken()
        run = self.run_repository.create_run(plan_id, started_at=self.clock(), trigger_source=trigger_source)
        state = _RunState(
            run_id=run.id,
            plan_id=plan_id,
            journal=RunJournal(run.id, plan_id, self.run_log_repository, self.clock),
        )
        self.registry.register(run.id, plan_id, token)

        try:
            state.journal.info("Run started", f"trigger={TriggerSource(trigger_source).value}")
            status = await self._process(state, token)
            return self._finalize(state, status)
        except RunSetupError as e:
            self._append_quietly(state, LogSeverity.ERROR, e.log_message, e.detail)
            state.record_failure(e.summary)
            return self._finalize(state, RunStatus.FAILED)
        except asyncio.CancelledError:
            if not state.finalized:
                self._append_quietly(state, LogSeverity.INFO, "Run cancellation acknowledged", "reason=task_cancelled")
                state.summary_error = state.summary_error or CANCELED_SUMMARY
                self._finalize(state, RunStatus.CANCELED)
            raise
        except Exception as e:
            if state.finalized:
                raise
            logger.exception(f"Run {state.run_id} for plan {plan_id} failed unexpectedly")
            self._append_quietly(state, LogSeverity.ERROR, "Run failed unexpectedly", describe_error(e))
            state.record_failure(f"Unexpected error: {e}")
            return self._finalize(state, derive_status(state.failed, state.uploaded, state.skipped))
        finally:
            self.registry.unregister(run.id)

    @staticmethod
    def _append_quietly(state: _RunState, severity: LogSeverity, message: str, detail: Optional[str] = None) -> None:
        """Append to the run log from an error path; a failing write is logged, not raised."""
        try:
            state.journal.append(severity, message, detail)
        except Exception as e:
            logger.warning(f"Could not write log line for run {state.run_id}: {describe_error(e)}")

    async def _process(self, state: _RunState, token: CancellationToken) -> RunStatus:
        plan = self.plan_repository.get_plan(state.plan_id)
        if plan is None:
            raise RunSetupError("Plan no longer exists.", "Run aborted: plan does not exist", f"planId={state.plan_id}")
        if not plan.enabled:
            raise RunSetupError("Plan is disabled.", "Run aborted: plan is disabled", f"planId={plan.id}")

        descriptor = SourceDescriptor.from_plan(plan)
        if not self.media_source.supports(descriptor.source_type):
            raise RunSetupError(
                f"Unsupported source mode: {plan.source_type}.",
                "Run aborted: unsupported source type",
                f"sourceType={plan.source_type}",
            )

        server = self.server_repository.get_server(plan.server_id)
        if server is None:
            raise RunSetupError(
                "Destination server not found.", "Run aborted: destination server missing", f"serverId={plan.server_id}"
            )

        password = self.credential_store.load_secret(server.credential_alias)
        if password is None:
            raise RunSetupError(
                "Server credentials unavailable. Re-save this server.",
                "Run aborted: credentials unavailable",
                f"serverId={server.id} alias={server.credential_alias}",
            )

        self._check_source_fields(descriptor)

        request = ShareConnectionRequest(
            host=server.host,
            share_name=server.share_name,
            username=server.username,
            password=password,
            domain=server.domain,
        )
        state.journal.info(
            "Resolved destination",
            f"host={server.host} share={server.share_name} basePath={server.base_path} sourceType={descriptor.source_type}",
        )

        try:
            items = await asyncio.to_thread(self.media_source.list_items, descriptor)
        except (OSError, ValueError) as e:
            raise RunSetupError(
                "Unable to scan local media. Check that the source is available.",
                "Run aborted: source scan failed",
                describe_error(e),
            )

        state.scanned = len(items)
        state.journal.info("Scan complete", f"source={descriptor.source_type} discovered={state.scanned}")

        album_label = self._album_label(descriptor)
        for item in items:
            if token.is_cancelled:
                state.journal.info("Run cancellation acknowledged", f"processed={state.processed}/{state.scanned}")
                state.summary_error = state.summary_error or CANCELED_SUMMARY
                return RunStatus.CANCELED

            await self._process_item(state, plan, server.base_path, request, item, album_label)
            if state.processed % PROGRESS_LOG_INTERVAL == 0 and state.processed < state.scanned:
                state.journal.info(
                    "Run progress",
                    f"processed={state.processed}/{state.scanned} uploaded={state.uploaded} "
                    f"skipped={state.skipped} failed={state.failed}",
                )

        return derive_status(state.failed, state.uploaded, state.skipped)

    @staticmethod
    def _check_source_fields(descriptor: SourceDescriptor) -> None:
        if descriptor.source_type == SourceType.ALBUM.value and not descriptor.album.strip():
            raise RunSetupError("Album source is missing. Re-save this plan.", "Run aborted: album source missing")
        if descriptor.source_type == SourceType.FOLDER.value and not descriptor.folder_path.strip():
            raise RunSetupError(
                "Folder source path is missing. Re-save this plan.", "Run aborted: folder source path missing"
            )

    @staticmethod
    def _album_label(descriptor: SourceDescriptor) -> str:
        if descriptor.source_type == SourceType.ALBUM.value:
            return descriptor.album
        if descriptor.source_type == SourceType.FOLDER.value:
            return os.path.basename(descriptor.folder_path.replace("\\", "/").rstrip("/"))
        return ""

    async def _process_item(
        self,
        state: _RunState,
        plan,
        base_path: str,
        request: ShareConnectionRequest,
        item: MediaItem,
        album_label: str
    ) -> None:
        existing = self.backup_record_repository.find_by_plan_and_item(state.plan_id, item.media_id)
        if existing is not None:
            state.skipped += 1
            state.journal.info("Skipped item", f"mediaId={item.media_id} reason=already_backed_up")
            return

        rendered = self.path_renderer.render_result(
            base_path, plan.directory_template, plan.filename_pattern, item, album_label
        )
        if rendered.used_default_tokens:
            state.journal.info("Template fallback used", f"tokens={','.join(sorted(rendered.used_default_tokens))}")
        remote_path = rendered.path

        try:
            stream = await asyncio.to_thread(self.media_source.open_stream, item.media_id)
            open_error = None
        except Exception as e:
            stream, open_error = None, e

        if stream is None:
            message = f"Unable to read local media item {item.media_id}."
            state.record_failure(message)
            state.journal.error(message, describe_error(open_error))
            return

        state.journal.info(
            "Processing item", f"mediaId={item.media_id} dest={mask_remote_path(remote_path)}"
        )
        try:
            await self._upload(request, remote_path, stream, item.size_bytes)
        except Exception as e:
            failure = classify(e)
            message = upload_failure_message(failure)
            state.record_failure(message)
            state.journal.error(message, f"mediaId={item.media_id} category={failure.value} {describe_error(e)}")
            return
        finally:
            stream.close()

        try:
            self.backup_record_repository.create(state.plan_id, item.media_id, remote_path, uploaded_at=self.clock())
        except DuplicateRecordError:
            state.journal.info("Backup record already present", f"mediaId={item.media_id}")
        except Exception as e:
            message = f"Uploaded item {item.media_id}, but failed to persist backup proof."
            state.record_failure(message)
            state.journal.error(message, describe_error(e))
            return

        state.uploaded += 1
        state.journal.info("Uploaded item", f"mediaId={item.media_id} dest={mask_remote_path(remote_path)}")

    async def _upload(
        self,
        request: ShareConnectionRequest,
        remote_path: str,
        stream,
        size_bytes: Optional[int]
    ) -> None:
        """Upload one item, bounded by the transfer timeout.

        Raises:
            ShareTimeoutError: If the transfer does not finish in time.
        """
        try:
            await asyncio.wait_for(
                self.share_client.upload_file(request, remote_path, stream, size_bytes),
                timeout=self.transfer_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ShareTimeoutError(
                f"Transfer of {mask_remote_path(remote_path)} timed out after {self.transfer_timeout:g}s"
            ) from e

    def _finalize(self, state: _RunState, status: RunStatus) -> RunExecutionResult:
        """Write the single terminal update and the closing log line."""
        if state.finalized:
            raise RuntimeError(f"Run {state.run_id} is already finalized")
        state.finalized = True

        updated = self.run_repository.update_run(
            state.run_id,
            status=status,
            finished_at=self.clock(),
            scanned_count=state.scanned,
            uploaded_count=state.uploaded,
            skipped_count=state.skipped,
            failed_count=state.failed,
            summary_error=state.summary_error,
        )
        if updated is None:
            # The plan was deleted mid-run and took the run row with it
            logger.warning(f"Run {state.run_id} no longer exists; finished with {status.value} without a record")
        else:
            state.journal.info(
                "Run finished",
                f"status={status.value} uploaded={state.uploaded} skipped={state.skipped} failed={state.failed}",
            )
            logger.info(f"Run {state.run_id} for plan {state.plan_id} finished with {status.value}")

        return RunExecutionResult(
            run_id=state.run_id,
            status=status,
            scanned_count=state.scanned,
            uploaded_count=state.uploaded,
            skipped_count=state.skipped,
            failed_count=state.failed,
            summary_error=state.summary_error,
        )
