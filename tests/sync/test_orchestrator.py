"""Tests for the sync orchestrator state machine."""

from __future__ import annotations

import sys
import threading
from unittest.mock import MagicMock, patch

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from notesync.core.config import SyncConfig
from notesync.core.types import OrchestratorState, Outcome, OutcomeKind, SyncDirection, SyncReport
from notesync.sync.classifier import CONFLICT_EXTRACTION_FAILED
from notesync.sync.command import build_sync_command
from notesync.sync.conflict import ConflictResolver
from notesync.sync.orchestrator import SUMMARY_CANCELLED, SUMMARY_SUCCESS, SyncOrchestrator
from notesync.sync.process import NEW_PROCESS_GROUP, ProcessRunner
from notesync.sync.types import OutputChunk, OutputStream, ResolutionResult
from tests.fakes import FakeRun, FakeRunner, sequence

TIMEOUT = 5.0

LOCK_STDERR = (
    "ERROR : Bisync critical error: prior lock file found: /vault/.lock\n"
    "ERROR : To remove it run: rclone deletefile /vault/.lock then try again\n"
)
CONFLICT_STDOUT = (
    "NOTICE: - WARNING  New or changed in both paths - note.md\n"
    "NOTICE: - Path1    Renaming Path1 copy - /vault/note.md.conflict1\n"
    "NOTICE: - Path1    Queue copy to Path1 - /vault/note.md\n"
)


@pytest.fixture
def config() -> SyncConfig:
    return SyncConfig(local_path="/vault", remote_path="gdrive:vault")


@pytest.fixture
def resolver() -> MagicMock:
    mock = MagicMock(spec=ConflictResolver)
    mock.resolve.return_value = ResolutionResult(
        True, "Merged into /vault/note.md", canonical_path="/vault/note.md"
    )
    return mock


def run_to_end(orchestrator: SyncOrchestrator, direction: SyncDirection) -> SyncReport:
    assert orchestrator.run(direction) is True
    report = orchestrator.wait(timeout=TIMEOUT)
    assert report is not None, "sync did not finish in time"
    return report


class TestSuccessfulRuns:
    """Tests for runs that end without recovery."""

    def test_push_success(self, config: SyncConfig, resolver: MagicMock) -> None:
        """Push exiting 0 should succeed without touching the resolver."""
        runner = FakeRunner()
        orchestrator = SyncOrchestrator(config, runner=runner, resolver=resolver)

        report = run_to_end(orchestrator, SyncDirection.PUSH)

        assert report.outcome.kind == OutcomeKind.SUCCESS
        assert report.summary == SUMMARY_SUCCESS
        assert report.attempts == 1
        assert runner.launched == [build_sync_command(SyncDirection.PUSH, config)]
        assert orchestrator.state == OrchestratorState.SUCCEEDED
        resolver.resolve.assert_not_called()
        assert runner.interactive == []

    def test_process_is_released(self, config: SyncConfig) -> None:
        """Every launched handle should be closed when the run ends."""
        runner = FakeRunner()
        orchestrator = SyncOrchestrator(config, runner=runner)

        run_to_end(orchestrator, SyncDirection.PULL)

        assert all(handle.closed for handle in runner.handles)

    def test_progress_lines_forwarded(self, config: SyncConfig) -> None:
        """Complete lines should reach the progress callback and the report."""
        runner = FakeRunner(script=sequence(FakeRun(stdout="Transferred: 1 / 2\nTransferred: 2 / 2\ntail")))
        orchestrator = SyncOrchestrator(config, runner=runner)
        snapshots: list[list[str]] = []
        orchestrator.set_on_progress(snapshots.append)

        report = run_to_end(orchestrator, SyncDirection.PUSH)

        assert snapshots[0] == ["Transferred: 1 / 2", "Transferred: 2 / 2"]
        assert snapshots[-1] == ["Transferred: 1 / 2", "Transferred: 2 / 2", "tail"]
        assert report.lines == ["Transferred: 1 / 2", "Transferred: 2 / 2", "tail"]

    def test_interleaved_streams_kept_apart(self, config: SyncConfig) -> None:
        """A partial stdout line should not absorb stderr output arriving before its newline."""
        chunks = [
            OutputChunk(OutputStream.STDOUT, "Transferred: 5"),
            OutputChunk(OutputStream.STDERR, "ERROR : boom\n"),
            OutputChunk(OutputStream.STDOUT, " of 10\n"),
            OutputChunk(OutputStream.STDERR, "NOTICE: tail"),
        ]
        runner = FakeRunner(script=sequence(FakeRun(chunks=chunks, returncode=0)))
        orchestrator = SyncOrchestrator(config, runner=runner)
        snapshots: list[list[str]] = []
        orchestrator.set_on_progress(snapshots.append)

        report = run_to_end(orchestrator, SyncDirection.PUSH)

        assert snapshots[0] == ["ERROR : boom"]
        assert report.lines == ["ERROR : boom", "Transferred: 5 of 10", "NOTICE: tail"]

    def test_malformed_outcome_is_fatal(self, config: SyncConfig) -> None:
        """An outcome missing the fields of its kind should fail the run instead of crashing the worker."""
        orchestrator = SyncOrchestrator(config, runner=FakeRunner())

        with patch(
            "notesync.sync.orchestrator.classify",
            return_value=Outcome(OutcomeKind.LOCK_FILE_ERROR),
        ):
            report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert report.outcome.kind == OutcomeKind.FATAL_ERROR
        assert "Lock outcome without a cleanup command" in report.outcome.message
        assert orchestrator.state == OrchestratorState.FAILED

    def test_host_command_prefix(self, config: SyncConfig) -> None:
        """Host indirection should prefix the rclone command."""
        config = config.with_overrides(host_command="flatpak-spawn --host")
        runner = FakeRunner()
        orchestrator = SyncOrchestrator(config, runner=runner)

        run_to_end(orchestrator, SyncDirection.BISYNC)

        assert runner.launched[0][:3] == ["flatpak-spawn", "--host", "rclone"]

    def test_fatal_error(self, config: SyncConfig) -> None:
        """Non-zero exit without a known pattern should fail with the first stderr line."""
        runner = FakeRunner(
            script=sequence(FakeRun(stderr="ERROR : directory not found\nmore detail\n", returncode=3))
        )
        orchestrator = SyncOrchestrator(config, runner=runner)

        report = run_to_end(orchestrator, SyncDirection.PUSH)

        assert report.outcome.kind == OutcomeKind.FATAL_ERROR
        assert report.summary == "Sync failed: ERROR : directory not found"
        assert "more detail" in report.outcome.message
        assert orchestrator.state == OrchestratorState.FAILED
        assert len(runner.launched) == 1

    def test_launch_error_not_retried(self, config: SyncConfig) -> None:
        """A missing rclone binary should fail immediately."""
        runner = FakeRunner(launch_error="executable not found")
        orchestrator = SyncOrchestrator(config, runner=runner)

        report = run_to_end(orchestrator, SyncDirection.PUSH)

        assert report.outcome.kind == OutcomeKind.FATAL_ERROR
        assert "executable not found" in report.summary
        assert report.attempts == 0

    def test_run_again_after_terminal_state(self, config: SyncConfig) -> None:
        """A finished orchestrator should accept a new run."""
        runner = FakeRunner()
        orchestrator = SyncOrchestrator(config, runner=runner)

        run_to_end(orchestrator, SyncDirection.PUSH)
        report = run_to_end(orchestrator, SyncDirection.PULL)

        assert report.succeeded
        assert len(runner.launched) == 2

    def test_complete_callback_called_once(self, config: SyncConfig) -> None:
        """on_complete should fire exactly once with the final report."""
        orchestrator = SyncOrchestrator(config, runner=FakeRunner())
        reports: list[SyncReport] = []
        orchestrator.set_on_complete(reports.append)

        report = run_to_end(orchestrator, SyncDirection.PUSH)

        assert reports == [report]

    def test_failing_callback_does_not_break_run(self, config: SyncConfig) -> None:
        """Errors raised by caller callbacks should be contained."""
        runner = FakeRunner(script=sequence(FakeRun(stdout="line\n")))
        orchestrator = SyncOrchestrator(config, runner=runner)
        orchestrator.set_on_progress(MagicMock(side_effect=RuntimeError("display gone")))

        report = run_to_end(orchestrator, SyncDirection.PUSH)

        assert report.succeeded


class TestLockRecovery:
    """Tests for stale lock cleanup and bounded retries."""

    def test_lock_error_cleaned_and_retried(self, config: SyncConfig) -> None:
        """A stale lock should be removed and the sync retried once."""
        runner = FakeRunner(
            script=sequence(FakeRun(stderr=LOCK_STDERR, returncode=7), FakeRun())
        )
        orchestrator = SyncOrchestrator(config, runner=runner)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert report.succeeded
        assert runner.cleanup_launches == [["rclone", "deletefile", "/vault/.lock"]]
        assert len(runner.sync_launches) == 2
        assert runner.sync_launches[1] == build_sync_command(SyncDirection.BISYNC, config)
        assert report.attempts == 2
        assert "Removing stale lock file: rclone deletefile /vault/.lock" in report.lines

    def test_cleanup_uses_configured_binary_and_host(self, config: SyncConfig) -> None:
        """The cleanup command should run through the configured rclone and host prefix."""
        config = config.with_overrides(rclone_binary="/opt/rclone", host_command=["flatpak-spawn", "--host"])
        runner = FakeRunner(
            script=sequence(FakeRun(stderr=LOCK_STDERR, returncode=7), FakeRun())
        )
        orchestrator = SyncOrchestrator(config, runner=runner)

        run_to_end(orchestrator, SyncDirection.BISYNC)

        assert runner.cleanup_launches == [
            ["flatpak-spawn", "--host", "/opt/rclone", "deletefile", "/vault/.lock"]
        ]

    def test_state_transitions(self, config: SyncConfig) -> None:
        """Lock recovery should pass through the retrying state."""
        runner = FakeRunner(
            script=sequence(FakeRun(stderr=LOCK_STDERR, returncode=7), FakeRun())
        )
        orchestrator = SyncOrchestrator(config, runner=runner)
        states: list[OrchestratorState] = []
        orchestrator.set_on_state_change(states.append)

        run_to_end(orchestrator, SyncDirection.BISYNC)

        assert states == [
            OrchestratorState.RUNNING,
            OrchestratorState.RETRYING_AFTER_LOCK_CLEANUP,
            OrchestratorState.RUNNING,
            OrchestratorState.SUCCEEDED,
        ]

    def test_retries_are_bounded(self, config: SyncConfig) -> None:
        """A lock that never clears should end in FAILED."""
        runner = FakeRunner(script=sequence(FakeRun(stderr=LOCK_STDERR, returncode=7)))
        orchestrator = SyncOrchestrator(config, runner=runner)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert report.outcome.kind == OutcomeKind.FATAL_ERROR
        assert "Lock file still present after 3" in report.summary
        assert len(runner.sync_launches) == 4
        assert len(runner.cleanup_launches) == 3

    @settings(max_examples=8, deadline=None)
    @given(max_retries=st.integers(min_value=0, max_value=6))
    def test_retry_bound_property(self, max_retries: int) -> None:
        """For any bound N, N+1 consecutive lock errors end the run."""
        config = SyncConfig(local_path="/vault", remote_path="gdrive:vault", max_lock_retries=max_retries)
        runner = FakeRunner(script=sequence(FakeRun(stderr=LOCK_STDERR, returncode=7)))
        orchestrator = SyncOrchestrator(config, runner=runner)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert orchestrator.state == OrchestratorState.FAILED
        assert report.outcome.kind == OutcomeKind.FATAL_ERROR
        assert len(runner.sync_launches) == max_retries + 1
        assert len(runner.cleanup_launches) == max_retries

    def test_cleanup_failure_is_fatal(self, config: SyncConfig) -> None:
        """If the cleanup command fails the sync should not be retried."""
        runner = FakeRunner(
            script=sequence(
                FakeRun(stderr=LOCK_STDERR, returncode=7),
                cleanup=FakeRun(stderr="permission denied\n", returncode=1),
            )
        )
        orchestrator = SyncOrchestrator(config, runner=runner)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert report.outcome.kind == OutcomeKind.FATAL_ERROR
        assert "Lock cleanup command failed" in report.summary
        assert len(runner.sync_launches) == 1


class TestConflicts:
    """Tests for the conflict resolution branch."""

    def test_conflict_resolved(self, config: SyncConfig, resolver: MagicMock) -> None:
        """A bisync conflict should be handed to the resolver."""
        runner = FakeRunner(script=sequence(FakeRun(stdout=CONFLICT_STDOUT)))
        orchestrator = SyncOrchestrator(config, runner=runner, resolver=resolver)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        resolver.resolve.assert_called_once_with("/vault/note.md.conflict1", "/vault/note.md")
        assert report.succeeded
        assert "/vault/note.md" in report.summary
        assert len(runner.launched) == 1

    def test_conflict_auto_push(self, resolver: MagicMock) -> None:
        """With auto-resolve the merged file should be pushed back."""
        config = SyncConfig(local_path="/vault", remote_path="gdrive:vault", auto_resolve_conflicts=True)
        runner = FakeRunner(script=sequence(FakeRun(stdout=CONFLICT_STDOUT), FakeRun()))
        orchestrator = SyncOrchestrator(config, runner=runner, resolver=resolver)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert report.succeeded
        assert report.direction == SyncDirection.PUSH
        assert runner.launched == [
            build_sync_command(SyncDirection.BISYNC, config),
            build_sync_command(SyncDirection.PUSH, config),
        ]

    def test_resolver_failure_is_fatal(self, config: SyncConfig, resolver: MagicMock) -> None:
        """A failed rename or merge should fail the run without pushing."""
        resolver.resolve.return_value = ResolutionResult(False, "/vault/note.md already exists")
        config = config.with_overrides(auto_resolve_conflicts=True)
        runner = FakeRunner(script=sequence(FakeRun(stdout=CONFLICT_STDOUT)))
        orchestrator = SyncOrchestrator(config, runner=runner, resolver=resolver)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert report.outcome.kind == OutcomeKind.FATAL_ERROR
        assert "already exists" in report.summary
        assert len(runner.launched) == 1

    def test_partial_conflict_paths_not_resolved(self, config: SyncConfig, resolver: MagicMock) -> None:
        """Only one extracted path must never reach the resolver."""
        stdout = "NOTICE: - Path1    Renaming Path1 copy - /vault/note.md.conflict1\n"
        runner = FakeRunner(script=sequence(FakeRun(stdout=stdout)))
        orchestrator = SyncOrchestrator(config, runner=runner, resolver=resolver)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert report.outcome.kind == OutcomeKind.FATAL_ERROR
        assert report.outcome.message == CONFLICT_EXTRACTION_FAILED
        resolver.resolve.assert_not_called()

    def test_conflict_markers_ignored_for_push(self, config: SyncConfig, resolver: MagicMock) -> None:
        """Conflict handling only applies to bisync."""
        runner = FakeRunner(script=sequence(FakeRun(stdout=CONFLICT_STDOUT)))
        orchestrator = SyncOrchestrator(config, runner=runner, resolver=resolver)

        report = run_to_end(orchestrator, SyncDirection.PUSH)

        assert report.succeeded
        resolver.resolve.assert_not_called()

    def test_default_resolver_uses_merge_tool(self, tmp_path) -> None:
        """Without an injected resolver the configured merge tool should run."""
        conflict_copy = tmp_path / "note.md.conflict1"
        conflict_copy.write_text("mine")
        other = tmp_path / "note.md.conflict2"
        other.write_text("theirs")
        stdout = (
            f"NOTICE: - Path1    Renaming Path1 copy - {conflict_copy}\n"
            f"NOTICE: - Path1    Queue copy to Path1 - {other}\n"
        )
        config = SyncConfig(local_path=str(tmp_path), remote_path="gdrive:vault", merge_tool=("kdiff3",))
        runner = FakeRunner(script=sequence(FakeRun(stdout=stdout)))
        orchestrator = SyncOrchestrator(config, runner=runner)

        report = run_to_end(orchestrator, SyncDirection.BISYNC)

        assert report.succeeded
        assert runner.interactive == [["kdiff3", str(tmp_path / "note.md"), str(other)]]
        assert (tmp_path / "note.md").read_text() == "mine"
        assert not other.exists()


class TestCancellation:
    """Tests for cancel() and concurrent run requests."""

    def test_cancel_mid_run(self, config: SyncConfig, resolver: MagicMock) -> None:
        """Cancelling should kill the process and skip classification."""
        release = threading.Event()
        runner = FakeRunner(script=sequence(FakeRun(stdout=CONFLICT_STDOUT, release=release)))
        orchestrator = SyncOrchestrator(config, runner=runner, resolver=resolver)

        assert orchestrator.run(SyncDirection.BISYNC)
        assert runner.launch_event.wait(TIMEOUT)
        assert runner.handles[0].started.wait(TIMEOUT)
        assert orchestrator.cancel() is True
        report = orchestrator.wait(timeout=TIMEOUT)

        assert report is not None
        assert report.outcome.kind == OutcomeKind.CANCELLED
        assert report.summary == SUMMARY_CANCELLED
        assert runner.handles[0].killed
        assert orchestrator.state == OrchestratorState.CANCELLED
        resolver.resolve.assert_not_called()
        # Output received before the kill is kept
        assert "NOTICE: - Path1    Queue copy to Path1 - /vault/note.md" in report.lines

    def test_second_run_rejected(self, config: SyncConfig) -> None:
        """run() while a sync is active should be rejected without side effects."""
        release = threading.Event()
        runner = FakeRunner(script=sequence(FakeRun(release=release)))
        orchestrator = SyncOrchestrator(config, runner=runner)

        assert orchestrator.run(SyncDirection.PUSH)
        assert runner.launch_event.wait(TIMEOUT)

        assert orchestrator.run(SyncDirection.PULL) is False
        assert orchestrator.configure(config.with_overrides(remote_path="other:")) is False
        assert len(runner.launched) == 1
        assert orchestrator.is_running

        release.set()
        report = orchestrator.wait(timeout=TIMEOUT)
        assert report is not None
        assert report.succeeded
        assert report.direction == SyncDirection.PUSH
        assert orchestrator.config == config

    def test_cancel_when_idle(self, config: SyncConfig) -> None:
        """cancel() without an active run should do nothing."""
        orchestrator = SyncOrchestrator(config, runner=FakeRunner())
        assert orchestrator.cancel() is False
        assert orchestrator.state == OrchestratorState.IDLE

    def test_run_without_config_rejected(self) -> None:
        """run() before configure() should be rejected."""
        runner = FakeRunner()
        orchestrator = SyncOrchestrator(runner=runner)

        assert orchestrator.run(SyncDirection.PUSH) is False
        assert runner.launched == []

    def test_configure_then_run(self, config: SyncConfig) -> None:
        """configure() should provide the settings for the next run."""
        runner = FakeRunner()
        orchestrator = SyncOrchestrator(runner=runner)

        assert orchestrator.configure(config) is True
        report = run_to_end(orchestrator, SyncDirection.PULL)

        assert report.succeeded
        assert runner.launched[0][2:4] == ["gdrive:vault", "/vault"]

    @pytest.mark.skipif(not NEW_PROCESS_GROUP, reason="process groups not supported")
    def test_cancel_kills_wrapped_process(self) -> None:
        """Cancelling should also stop processes started by a host command wrapper."""
        # Stands in for flatpak-spawn: the real work runs in a grandchild sharing the pipes
        wrapper = (
            "import subprocess, sys, time\n"
            "subprocess.Popen([sys.executable, '-c', 'import time; time.sleep(30)'])\n"
            "print('ready', flush=True)\n"
            "time.sleep(30)\n"
        )
        config = SyncConfig(
            local_path="/vault",
            remote_path="gdrive:vault",
            host_command=(sys.executable, "-c", wrapper),
        )
        orchestrator = SyncOrchestrator(config, runner=ProcessRunner())
        ready = threading.Event()

        def on_progress(lines: list[str]) -> None:
            if "ready" in lines:
                ready.set()

        orchestrator.set_on_progress(on_progress)

        assert orchestrator.run(SyncDirection.PUSH)
        assert ready.wait(TIMEOUT)
        assert orchestrator.cancel() is True
        report = orchestrator.wait(timeout=TIMEOUT)

        assert report is not None, "cancelled run still waiting on its output"
        assert report.outcome.kind == OutcomeKind.CANCELLED
        assert "ready" in report.lines
