"""Subprocess launching with streamed, interleaved output.

This module provides:
- ProcessRunner: Starts external commands (rclone, lock cleanup, merge tool)
- ProcessHandle: Owns one running process, streams its output, kills and reaps it

Output of both pipes is read by one thread per pipe and delivered through a
single queue, so chunks come out in arrival order regardless of which pipe
produced them.
"""

from __future__ import annotations

import codecs
import logging
import os
import queue
import signal
import subprocess
import threading
from collections.abc import Iterator, Mapping
from pathlib import Path
from typing import IO

from notesync.core.types import ExitStatus
from notesync.sync.types import LaunchError, OutputChunk, OutputStream

logger = logging.getLogger(__name__)

READ_SIZE = 4096
READER_JOIN_TIMEOUT = 5.0
# Time between SIGTERM and SIGKILL when cancelling
KILL_GRACE_S = 2.0
FORCE_KILL_SIGNAL: int = getattr(signal, "SIGKILL", signal.SIGTERM)

# Children get a process group of their own where the platform supports it
NEW_PROCESS_GROUP = hasattr(os, "killpg")


class ProcessHandle:
    """Handle on one running subprocess.

    Usage:
        with runner.launch(["rclone", "version"]) as handle:
            for chunk in handle.chunks():
                print(chunk.text, end="")
            status = handle.wait()
    """

    def __init__(self, process: subprocess.Popen[bytes], argv: list[str]) -> None:
        self._process = process
        self._argv = list(argv)
        self._queue: queue.Queue[OutputChunk | None] = queue.Queue()
        self._consumed = False
        self._lock = threading.Lock()
        self._kill_timer: threading.Timer | None = None

        self._readers: list[threading.Thread] = []
        for pipe, stream in ((process.stdout, OutputStream.STDOUT), (process.stderr, OutputStream.STDERR)):
            if pipe is None:
                continue
            reader = threading.Thread(
                target=self._read_pipe,
                args=(pipe, stream),
                name=f"ProcessReader-{process.pid}-{stream.value}",
                daemon=True,
            )
            self._readers.append(reader)
            reader.start()

    @property
    def argv(self) -> list[str]:
        """Command line of the process."""
        return list(self._argv)

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def running(self) -> bool:
        return self._process.poll() is None

    def _read_pipe(self, pipe: IO[bytes], stream: OutputStream) -> None:
        """Read a pipe until EOF, pushing decoded chunks to the queue."""
        # Incremental decoding keeps multi-byte characters split across reads intact
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = pipe.read(READ_SIZE)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    self._queue.put(OutputChunk(stream, text))
            tail = decoder.decode(b"", final=True)
            if tail:
                self._queue.put(OutputChunk(stream, tail))
        except (OSError, ValueError) as e:
            # Pipe closed underneath us (process killed and reaped)
            logger.debug("Reader for %s of pid %d stopped: %s", stream.value, self.pid, e)
        finally:
            self._queue.put(None)
            pipe.close()

    def chunks(self) -> Iterator[OutputChunk]:
        """Iterate over raw output chunks until both pipes are closed.

        The iterator is lazy, finite and can only be obtained once.

        Raises:
            RuntimeError: If the output was already consumed.
        """
        with self._lock:
            if self._consumed:
                raise RuntimeError("Output of this process has already been consumed")
            self._consumed = True
        return self._iter_chunks()

    def _iter_chunks(self) -> Iterator[OutputChunk]:
        remaining = len(self._readers)
        while remaining:
            item = self._queue.get()
            if item is None:
                remaining -= 1
                continue
            yield item

    def wait(self, timeout: float | None = None) -> ExitStatus:
        """Wait for the process to exit.

        Args:
            timeout: Seconds to wait, None to wait forever.

        Returns:
            The exit status.

        Raises:
            subprocess.TimeoutExpired: If the timeout elapsed first.
        """
        returncode = self._process.wait(timeout=timeout)
        return ExitStatus.from_returncode(returncode)

    def kill(self) -> None:
        """Terminate the process and everything it started.

        The whole process group gets SIGTERM first, which wrappers such as
        flatpak-spawn forward to the host side; whatever is still alive
        KILL_GRACE_S later gets SIGKILL. Killing only the direct child would
        leave its children holding the output pipes open.

        Calling it again, or after the group is gone, does nothing.
        """
        with self._lock:
            if self._kill_timer is not None:
                return
            if not self._signal(signal.SIGTERM):
                return
            self._kill_timer = threading.Timer(KILL_GRACE_S, self._signal, args=(FORCE_KILL_SIGNAL,))
            self._kill_timer.daemon = True
            self._kill_timer.start()
        logger.info("Terminating pid %d (%s) and its process group", self.pid, self._argv[0])

    def _signal(self, sig: int) -> bool:
        """Send a signal to the process group, or to the process alone where groups are unsupported.

        Returns:
            False if nothing was left to signal.
        """
        if not NEW_PROCESS_GROUP:
            if self._process.poll() is not None:
                return False
            self._process.send_signal(sig)
            return True
        try:
            # The child is a session leader, so its pid is the group id
            os.killpg(self._process.pid, sig)
        except (ProcessLookupError, PermissionError):
            return False
        return True

    def close(self) -> None:
        """Kill whatever is left of the process group and reap the process."""
        self.kill()
        self._process.wait()
        for reader in self._readers:
            reader.join(timeout=READER_JOIN_TIMEOUT)

    def __enter__(self) -> ProcessHandle:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()


class ProcessRunner:
    """Starts external commands.

    Usage:
        runner = ProcessRunner()
        handle = runner.launch(["rclone", "sync", "~/Notes", "gdrive:notes"])
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        """Initialize the runner.

        Args:
            env: Environment for child processes (defaults to the current one).
        """
        self._env = dict(env) if env is not None else None

    def launch(self, argv: list[str], cwd: Path | str | None = None) -> ProcessHandle:
        """Start a command with piped output.

        Args:
            argv: Command and arguments.
            cwd: Working directory for the command.

        Returns:
            A handle owning the new process.

        Raises:
            LaunchError: If the executable cannot be started.
        """
        if not argv:
            raise LaunchError(argv, "empty command")

        try:
            process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=cwd,
                env=self._env,
                bufsize=0,
                start_new_session=NEW_PROCESS_GROUP,
            )
        except FileNotFoundError as e:
            raise LaunchError(argv, "executable not found") from e
        except PermissionError as e:
            raise LaunchError(argv, "permission denied") from e
        except OSError as e:
            raise LaunchError(argv, str(e)) from e

        logger.debug("Launched pid %d: %s", process.pid, argv)
        return ProcessHandle(process, argv)

    def run(self, argv: list[str], cwd: Path | str | None = None) -> tuple[ExitStatus, str]:
        """Run a command to completion, collecting its combined output.

        Args:
            argv: Command and arguments.
            cwd: Working directory for the command.

        Returns:
            Tuple of (exit status, combined output text).

        Raises:
            LaunchError: If the executable cannot be started.
        """
        with self.launch(argv, cwd=cwd) as handle:
            output = "".join(chunk.text for chunk in handle.chunks())
            status = handle.wait()
        return status, output

    def run_interactive(self, argv: list[str]) -> ExitStatus:
        """Run a command attached to the current terminal and wait for it.

        Used for tools a human interacts with, such as a merge tool.

        Raises:
            LaunchError: If the executable cannot be started.
        """
        if not argv:
            raise LaunchError(argv, "empty command")
        try:
            completed = subprocess.run(argv, check=False, env=self._env)
        except FileNotFoundError as e:
            raise LaunchError(argv, "executable not found") from e
        except PermissionError as e:
            raise LaunchError(argv, "permission denied") from e
        except OSError as e:
            raise LaunchError(argv, str(e)) from e
        return ExitStatus.from_returncode(completed.returncode)
