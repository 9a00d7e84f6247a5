"""Tests for the run executor."""

import asyncio
from datetime import datetime
from unittest.mock import MagicMock, patch

import pytest

from nasbox.models.enums import LogSeverity, RunStatus, TriggerSource
from nasbox.repositories import PlanRepository, RunLogRepository, RunRepository
from nasbox.services.path_renderer import PathRenderer
from nasbox.services.plan_service import PlanService
from nasbox.services.run_executor import (
    CANCELED_SUMMARY,
    ActiveRunRegistry,
    CancellationToken,
    RunExecutor,
    RunJournal,
    derive_status,
)
from nasbox.services.share_client import ShareAuthenticationError, SharePermissionError, ShareTimeoutError

from conftest import make_item


@pytest.fixture
def registry():
    return ActiveRunRegistry()


@pytest.fixture
def executor(
    plan_repository,
    server_repository,
    credential_store,
    backup_record_repository,
    run_repository,
    run_log_repository,
    media_source,
    share_client,
    registry
):
    """Create an executor over the in-memory database and fake transports."""
    return RunExecutor(
        plan_repository=plan_repository,
        server_repository=server_repository,
        credential_store=credential_store,
        backup_record_repository=backup_record_repository,
        run_repository=run_repository,
        run_log_repository=run_log_repository,
        media_source=media_source,
        share_client=share_client,
        path_renderer=PathRenderer(device_label="test-device"),
        registry=registry,
    )


def log_messages(run_log_repository, run_id):
    return [log.message for log in run_log_repository.logs_for_run(run_id)]


class TestDeriveStatus:
    """Tests for terminal status derivation."""

    @pytest.mark.parametrize("failed, uploaded, skipped, expected", [
        (0, 0, 0, RunStatus.SUCCESS),
        (0, 3, 0, RunStatus.SUCCESS),
        (0, 0, 3, RunStatus.SUCCESS),
        (1, 2, 0, RunStatus.PARTIAL),
        (1, 0, 2, RunStatus.PARTIAL),
        (3, 0, 0, RunStatus.FAILED),
    ])
    def test_derive_status(self, failed, uploaded, skipped, expected):
        assert derive_status(failed, uploaded, skipped) is expected


class TestSuccessfulRuns:
    """Tests for runs whose items all upload."""

    @pytest.mark.asyncio
    async def test_uploads_every_item(
        self, executor, plan, share_client, run_repository, run_log_repository, backup_record_repository
    ):
        result = await executor.execute(plan.id)

        assert result.status is RunStatus.SUCCESS
        assert (result.scanned_count, result.uploaded_count, result.skipped_count, result.failed_count) == (3, 3, 0, 0)
        assert result.summary_error is None
        assert share_client.uploads[0] == "Backups/Phone/2024/05/17/20240517_083000_IMG_0001.jpg"
        assert backup_record_repository.count_for_plan(plan.id) == 3

        run = run_repository.get_run(result.run_id)
        assert run.status == "SUCCESS"
        assert run.finished_at is not None
        assert run.uploaded_count == 3

        messages = log_messages(run_log_repository, result.run_id)
        assert messages[0] == "Run started"
        assert messages[-1] == "Run finished"
        assert messages.count("Run finished") == 1
        assert "Scan complete" in messages

    @pytest.mark.asyncio
    async def test_rerun_skips_recorded_items(self, executor, plan, share_client, backup_record_repository):
        await executor.execute(plan.id)
        result = await executor.execute(plan.id)

        assert result.status is RunStatus.SUCCESS
        assert (result.uploaded_count, result.skipped_count, result.failed_count) == (0, 3, 0)
        assert len(share_client.uploads) == 3
        assert backup_record_repository.count_for_plan(plan.id) == 3

    @pytest.mark.asyncio
    async def test_trigger_source_is_recorded(self, executor, plan, run_repository):
        result = await executor.execute(plan.id, TriggerSource.SCHEDULED)
        assert run_repository.get_run(result.run_id).trigger_source == "SCHEDULED"

    @pytest.mark.asyncio
    async def test_duplicate_record_counts_as_uploaded(
        self, executor, plan, share_client, backup_record_repository, run_log_repository
    ):
        # Another writer records the item between upload and bookkeeping
        def record_concurrently(remote_path):
            media_id = remote_path.rsplit("_", 1)[-1].rsplit(".", 1)[0]
            backup_record_repository.create(plan.id, f"IMG_{media_id}", remote_path)

        share_client.on_upload = record_concurrently
        result = await executor.execute(plan.id)

        assert result.status is RunStatus.SUCCESS
        assert result.uploaded_count == 3
        assert "Backup record already present" in log_messages(run_log_repository, result.run_id)
        assert backup_record_repository.count_for_plan(plan.id) == 3

    @pytest.mark.asyncio
    async def test_progress_is_logged_every_ten_items(self, executor, plan, media_source, run_log_repository):
        media_source.items = [make_item(f"IMG_{index:04d}") for index in range(12)]

        result = await executor.execute(plan.id)

        assert result.uploaded_count == 12
        assert log_messages(run_log_repository, result.run_id).count("Run progress") == 1

    @pytest.mark.asyncio
    async def test_registry_is_cleared_after_run(self, executor, plan, registry):
        result = await executor.execute(plan.id)
        assert registry.token_for(result.run_id) is None
        assert not registry.is_plan_active(plan.id)


class TestPerItemFailures:
    """Per-item failures are counted and the run continues."""

    @pytest.mark.asyncio
    async def test_one_failed_upload_is_partial(self, executor, plan, share_client, backup_record_repository):
        share_client.upload_errors["IMG_0002.jpg"] = SharePermissionError("STATUS_ACCESS_DENIED")

        result = await executor.execute(plan.id)

        assert result.status is RunStatus.PARTIAL
        assert (result.uploaded_count, result.failed_count) == (2, 1)
        assert result.summary_error == "Remote permissions denied upload access."
        assert backup_record_repository.find_by_plan_and_item(plan.id, "IMG_0002") is None

    @pytest.mark.asyncio
    async def test_all_failed_is_failed_and_first_message_wins(self, executor, plan, share_client):
        share_client.upload_errors["IMG_0001.jpg"] = ShareAuthenticationError("logon failure")
        share_client.upload_errors["IMG_0002.jpg"] = ShareTimeoutError("timed out")
        share_client.upload_errors["IMG_0003.jpg"] = RuntimeError("weird")

        result = await executor.execute(plan.id)

        assert result.status is RunStatus.FAILED
        assert result.failed_count == 3
        assert result.summary_error == "Authentication failed. Verify username and password."

    @pytest.mark.asyncio
    async def test_failures_with_skipped_items_are_partial(
        self, executor, plan, share_client, backup_record_repository
    ):
        backup_record_repository.create(plan.id, "IMG_0001", "earlier")
        share_client.upload_errors["IMG_0002.jpg"] = ShareTimeoutError("timed out")
        share_client.upload_errors["IMG_0003.jpg"] = ShareTimeoutError("timed out")

        result = await executor.execute(plan.id)

        assert result.status is RunStatus.PARTIAL
        assert (result.uploaded_count, result.skipped_count, result.failed_count) == (0, 1, 2)

    @pytest.mark.asyncio
    async def test_unreadable_item_is_counted_and_skipped(
        self, executor, plan, media_source, share_client, run_log_repository
    ):
        media_source.unreadable.add("IMG_0002")

        result = await executor.execute(plan.id)

        assert result.status is RunStatus.PARTIAL
        assert (result.uploaded_count, result.failed_count) == (2, 1)
        assert result.summary_error == "Unable to read local media item IMG_0002."
        assert len(share_client.uploads) == 2
        errors = [
            log for log in run_log_repository.logs_for_run(result.run_id) if log.severity == LogSeverity.ERROR.value
        ]
        assert [log.message for log in errors] == ["Unable to read local media item IMG_0002."]

    @pytest.mark.asyncio
    async def test_open_error_of_any_type_is_counted_per_item(
        self, executor, plan, media_source, share_client, run_log_repository
    ):
        open_stream = media_source.open_stream

        def failing_open(media_id):
            if media_id == "IMG_0001":
                raise ValueError("embedded null byte")
            return open_stream(media_id)

        with patch.object(media_source, "open_stream", side_effect=failing_open):
            result = await executor.execute(plan.id)

        assert result.status is RunStatus.PARTIAL
        assert (result.uploaded_count, result.failed_count) == (2, 1)
        assert result.summary_error == "Unable to read local media item IMG_0001."
        assert len(share_client.uploads) == 2
        assert not any(path.endswith("IMG_0001.jpg") for path in share_client.uploads)
        errors = [
            log for log in run_log_repository.logs_for_run(result.run_id) if log.severity == LogSeverity.ERROR.value
        ]
        assert errors[0].detail == "ValueError: embedded null byte"

    @pytest.mark.asyncio
    async def test_stalled_upload_times_out_and_run_continues(self, executor, plan, share_client):
        upload_file = share_client.upload_file

        async def stalling_upload(request, remote_path, stream, size_bytes=None, progress_callback=None):
            if remote_path.endswith("IMG_0002.jpg"):
                await asyncio.sleep(3600)
            await upload_file(request, remote_path, stream, size_bytes, progress_callback)

        executor.share_client.upload_file = stalling_upload
        executor.transfer_timeout = 0.05

        result = await executor.execute(plan.id)

        assert result.status is RunStatus.PARTIAL
        assert (result.uploaded_count, result.failed_count) == (2, 1)
        assert result.summary_error == "Connection timed out while uploading."

    @pytest.mark.asyncio
    async def test_unexpected_error_after_uploads_is_partial(self, executor, plan, backup_record_repository):
        def lookup(plan_id, media_id):
            if media_id == "IMG_0003":
                raise RuntimeError("database is locked")
            return None

        with patch.object(backup_record_repository, "find_by_plan_and_item", side_effect=lookup):
            result = await executor.execute(plan.id)

        assert result.status is RunStatus.PARTIAL
        assert (result.uploaded_count, result.failed_count) == (2, 1)
        assert result.summary_error == "Unexpected error: database is locked"

    @pytest.mark.asyncio
    async def test_template_fallback_is_logged(self, executor, plan, plan_repository, run_log_repository):
        plan_repository.update_plan(plan.id, directory_template="{camera}")

        result = await executor.execute(plan.id)

        assert result.status is RunStatus.SUCCESS
        assert "Template fallback used" in log_messages(run_log_repository, result.run_id)


class TestSetupFailures:
    """Setup failures finalize the run as FAILED without touching items."""

    async def assert_fast_fail(self, executor, plan_id, share_client, run_repository, summary):
        result = await executor.execute(plan_id)

        assert result.status is RunStatus.FAILED
        assert (result.scanned_count, result.uploaded_count, result.skipped_count, result.failed_count) == (0, 0, 0, 1)
        assert result.summary_error == summary
        assert share_client.uploads == []
        assert run_repository.get_run(result.run_id).status == "FAILED"

    @pytest.mark.asyncio
    async def test_disabled_plan(self, executor, plan, plan_repository, share_client, run_repository):
        plan_repository.update_plan(plan.id, enabled=False)
        await self.assert_fast_fail(executor, plan.id, share_client, run_repository, "Plan is disabled.")

    @pytest.mark.asyncio
    async def test_unsupported_source(self, executor, plan, media_source, share_client, run_repository):
        media_source.supported = {"FOLDER"}
        await self.assert_fast_fail(
            executor, plan.id, share_client, run_repository, "Unsupported source mode: ALBUM."
        )

    @pytest.mark.asyncio
    async def test_missing_server(self, executor, plan, server_repository, share_client, run_repository):
        with patch.object(server_repository, "get_server", return_value=None):
            await self.assert_fast_fail(
                executor, plan.id, share_client, run_repository, "Destination server not found."
            )

    @pytest.mark.asyncio
    async def test_missing_credentials(self, executor, plan, credential_store, share_client, run_repository):
        credential_store.delete_secret("server-test")
        await self.assert_fast_fail(
            executor, plan.id, share_client, run_repository,
            "Server credentials unavailable. Re-save this server.",
        )

    @pytest.mark.asyncio
    async def test_missing_album(self, executor, plan, plan_repository, share_client, run_repository):
        plan_repository.update_plan(plan.id, source_album="  ")
        await self.assert_fast_fail(
            executor, plan.id, share_client, run_repository, "Album source is missing. Re-save this plan."
        )

    @pytest.mark.asyncio
    async def test_scan_failure(self, executor, plan, media_source, share_client, run_repository):
        media_source.scan_error = FileNotFoundError("gone")
        await self.assert_fast_fail(
            executor, plan.id, share_client, run_repository,
            "Unable to scan local media. Check that the source is available.",
        )

    @pytest.mark.asyncio
    async def test_missing_plan(self, credential_store, media_source, share_client):
        """A deleted plan still yields one FAILED finalize."""
        plan_repository = MagicMock(spec=PlanRepository)
        plan_repository.get_plan.return_value = None
        run_repository = MagicMock(spec=RunRepository)
        run_repository.create_run.return_value = MagicMock(id=7)
        run_log_repository = MagicMock(spec=RunLogRepository)

        executor = RunExecutor(
            plan_repository=plan_repository,
            server_repository=MagicMock(),
            credential_store=credential_store,
            backup_record_repository=MagicMock(),
            run_repository=run_repository,
            run_log_repository=run_log_repository,
            media_source=media_source,
            share_client=share_client,
        )
        result = await executor.execute(42)

        assert result.status is RunStatus.FAILED
        assert result.summary_error == "Plan no longer exists."
        run_repository.update_run.assert_called_once()
        kwargs = run_repository.update_run.call_args.kwargs
        assert kwargs["status"] is RunStatus.FAILED
        assert kwargs["failed_count"] == 1
        assert kwargs["finished_at"] is not None


class TestCancellation:
    """Cooperative cancellation between items."""

    @pytest.mark.asyncio
    async def test_cancel_between_items(self, executor, plan, share_client, run_repository, run_log_repository):
        token = CancellationToken()
        share_client.on_upload = lambda _: token.cancel()

        result = await executor.execute(plan.id, cancellation=token)

        assert result.status is RunStatus.CANCELED
        assert result.uploaded_count == 1
        assert result.summary_error == CANCELED_SUMMARY
        assert len(share_client.uploads) == 1
        assert run_repository.get_run(result.run_id).status == "CANCELED"
        messages = log_messages(run_log_repository, result.run_id)
        assert "Run cancellation acknowledged" in messages
        assert messages.count("Run finished") == 1

    @pytest.mark.asyncio
    async def test_plan_deleted_mid_run_returns_a_result(
        self,
        executor,
        plan,
        plan_repository,
        server_repository,
        backup_record_repository,
        media_source,
        share_client,
        run_repository,
        registry
    ):
        plan_service = PlanService(
            plan_repository, server_repository, backup_record_repository, media_source, registry=registry
        )
        share_client.on_upload = lambda _: plan_service.delete_plan(plan.id)

        result = await executor.execute(plan.id)

        assert result.status is RunStatus.FAILED
        assert len(share_client.uploads) == 1
        assert run_repository.get_run(result.run_id) is None
        assert plan_repository.get_plan(plan.id) is None
        assert registry.active_run_ids() == []

    @pytest.mark.asyncio
    async def test_task_cancellation_finalizes_canceled(self, executor, plan, media_source, run_repository):
        started = asyncio.Event()

        async def blocking_upload(*args, **kwargs):
            started.set()
            await asyncio.sleep(3600)

        executor.share_client.upload_file = blocking_upload
        task = asyncio.create_task(executor.execute(plan.id))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        runs = run_repository.latest_runs()
        assert runs[0].status == "CANCELED"
        assert runs[0].summary_error == CANCELED_SUMMARY


class TestRunJournal:
    """Tests for the append-only run journal."""

    def test_timestamps_never_go_backwards(self):
        log_repository = MagicMock(spec=RunLogRepository)
        times = iter([datetime(2026, 1, 1, 12, 0, 5), datetime(2026, 1, 1, 12, 0, 1)])
        journal = RunJournal(1, 2, log_repository, clock=lambda: next(times))

        journal.info("first")
        journal.error("second", "detail")

        first, second = log_repository.append.call_args_list
        assert second.kwargs["timestamp"] == first.kwargs["timestamp"]
        assert second.args[1] is LogSeverity.ERROR
