from __future__ import annotations

import enum
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

from llamactl.entities.history_entry import RunStatus
from llamactl.entities.run_info import ArrayValue, CapturedRunInfo, EndReason, OmittedValue, RunConfig
from llamactl.frameworks_drivers.command_builder import CommandBuilder, flag_value, format_command, port_from_argv
from llamactl.frameworks_drivers.config import LauncherConfig
from llamactl.frameworks_drivers.history_store import HistoryStore
from llamactl.frameworks_drivers.model_repository import ModelRepository, file_fingerprint
from llamactl.frameworks_drivers.process_lifecycle_manager import ProcessLifecycleManager
from llamactl.frameworks_drivers.run_info_store import RunInfoStore
from llamactl.shared.errors import LaunchConflictError, ModelNotFoundError, SpawnFailureError
from llamactl.shared.gguf_utils import GGUFUtils
from llamactl.shared.loader_log_parser import LoaderLogParser
from llamactl.shared.logger import Logger
from llamactl.shared.process_utils import find_pid_by_port

logger = Logger.get(__name__)

TAGS_KEY = "general.tags"
INTERRUPTED_EXIT_CODE = 130


class RunPhase(enum.Enum):
    PREPARING = "preparing"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    EXITED = "exited"
    INTERRUPTED = "interrupted"
    ERRORED = "errored"


_TERMINAL_PHASES = {
    "exit": RunPhase.EXITED,
    "sigint": RunPhase.INTERRUPTED,
    "error": RunPhase.ERRORED,
}


class CaptureBuffer:
    """
    Bounded store of the diagnostic lines of one run.

    Capturing stops for good once either the line or the byte ceiling is
    reached; lines offered afterwards are ignored.
    """

    MAX_LINES = 400
    MAX_BYTES = 64 * 1024

    def __init__(self):
        self.lines: list[str] = []
        self.byte_count = 0
        self.capturing = True

    def __len__(self) -> int:
        return len(self.lines)

    def offer(self, line: str) -> bool:
        """Store the line if it is diagnostic and the buffer is still open. Returns True if stored."""
        if not self.capturing or not LoaderLogParser.should_capture(line):
            return False

        sanitized = LoaderLogParser.sanitize_large_arrays(line)
        self.lines.append(sanitized)
        self.byte_count += len(sanitized.encode("utf-8")) + 1

        if len(self.lines) >= self.MAX_LINES or self.byte_count >= self.MAX_BYTES:
            logger.debug(f"Capture ceiling reached ({len(self.lines)} lines, {self.byte_count} bytes)")
            self.capturing = False
        return True


@dataclass
class RunSession:
    """Mutable state of a single foreground invocation."""

    model_name: str
    model_path: Path
    run_config: RunConfig
    phase: RunPhase = RunPhase.PREPARING
    process: Optional[subprocess.Popen] = None
    capture: CaptureBuffer = field(default_factory=CaptureBuffer)
    pid_recorded: bool = False
    interim_written: bool = False
    finalized: bool = False
    exit_code: Optional[int] = None


class RunCaptureEngine:
    """
    Runs llama-server in the foreground, echoing its output while capturing
    the loader diagnostics into a per-model run-info record.

    Every invocation ends in exactly one finalization, whether the server
    exits on its own, the user interrupts it, or an error escapes.
    """

    PID_DISCOVERY_AFTER_LINES = 3
    INTERIM_SAVE_AFTER_LINES = 10
    TERMINATE_TIMEOUT_SECONDS = 5

    def __init__(
        self,
        config: LauncherConfig,
        manager: ProcessLifecycleManager,
        history: HistoryStore,
        run_info_store: RunInfoStore,
        repository: Optional[ModelRepository] = None,
        output: Optional[TextIO] = None,
        pid_finder: Callable[[Optional[int]], Optional[int]] = find_pid_by_port,
        tag_reader: Callable[[str], Optional[list[str]]] = GGUFUtils.read_general_tags,
    ):
        self.config = config
        self.manager = manager
        self.history = history
        self.run_info_store = run_info_store
        self.repository = repository or ModelRepository(config.expanded_models_dir)
        self.commands = CommandBuilder(config, self.repository)
        self.output = output
        self._pid_finder = pid_finder
        self._tag_reader = tag_reader
        self.last_session: Optional[RunSession] = None

    def _echo(self, text: str) -> None:
        stream = self.output or sys.stdout
        stream.write(text + "\n")
        stream.flush()

    def prepare(self, model_name: str, extra_args: Optional[Sequence[str]] = None) -> RunSession:
        """
        Resolve the model file and build the command line.

        Raises:
            ModelNotFoundError: If the model file does not exist. Nothing is spawned.
            LaunchConflictError: If the model is already tracked as running. Nothing is spawned.
        """
        model_path = self.repository.model_path(model_name)
        if not model_path.is_file():
            available = [model.name for model in self.repository.list_models()]
            raise ModelNotFoundError(model_name, available[:10])

        existing = self.manager.is_running(model_name)
        if existing is not None:
            raise LaunchConflictError(model_name, pid=existing.pid, port=existing.port)

        argv = self.commands.build(model_name, extra_args)
        run_config = RunConfig(
            llama_cpp_path=self.config.expanded_llama_cpp_path,
            argv=argv,
            models_dir=str(self.repository.models_dir),
            model_name=model_name,
            extra_args=list(extra_args or []),
            host=flag_value(argv, "--host"),
            port=port_from_argv(argv),
        )
        return RunSession(model_name=model_name, model_path=model_path, run_config=run_config)

    def run(self, model_name: str, extra_args: Optional[Sequence[str]] = None) -> int:
        """
        Run the model in the foreground until the server exits.

        Args:
            model_name: Model name without the .gguf extension.
            extra_args: Arguments appended after the configured parameters.

        Returns:
            The server's exit code, or 130 if the user interrupted the run.

        Raises:
            ModelNotFoundError: If the model file does not exist.
            LaunchConflictError: If the model is already tracked as running.
            SpawnFailureError: If the subprocess could not be created.
        """
        session = self.prepare(model_name, extra_args)
        self.last_session = session

        self._echo(f"Starting llama.cpp with model: {model_name}")
        self._echo(f"Command: {format_command(session.run_config.argv)}")
        self._echo("")

        self.history.add(model_name, "running")
        self.manager.mark_running(model_name, session.run_config.port, "foreground")

        try:
            session.process = self._spawn(session)
            session.phase = RunPhase.STREAMING
            for line in session.process.stdout:
                self._handle_line(session, line.rstrip("\r\n"))
            exit_code = self._exit_code(session.process.wait())
        except KeyboardInterrupt:
            self._echo("\nInterrupted by user")
            self._finalize(session, "sigint", INTERRUPTED_EXIT_CODE)
            return INTERRUPTED_EXIT_CODE
        except Exception:
            self._finalize(session, "error", 1)
            raise

        self._finalize(session, "exit", exit_code)
        return exit_code

    def _spawn(self, session: RunSession) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                session.run_config.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn llama-server for {session.model_name}: {e}")
            raise SpawnFailureError(session.model_name, e) from e

    @staticmethod
    def _exit_code(returncode: int) -> int:
        # Popen reports death by signal N as -N; shells report 128 + N
        if returncode < 0:
            return 128 - returncode
        return returncode

    def _handle_line(self, session: RunSession, line: str) -> None:
        self._echo(line)

        if not session.capture.offer(line):
            return

        if not session.pid_recorded and len(session.capture) >= self.PID_DISCOVERY_AFTER_LINES:
            session.pid_recorded = True
            self._record_pid(session)

        if not session.interim_written and len(session.capture) >= self.INTERIM_SAVE_AFTER_LINES:
            session.interim_written = True
            self._save_run_info(session, None, 0)

    def _record_pid(self, session: RunSession) -> None:
        pid = self._pid_finder(session.run_config.port)
        if pid is None and session.process is not None:
            pid = session.process.pid
        if pid is not None:
            self.manager.update_pid(session.model_name, pid)

    @staticmethod
    def _needs_file_tags(value) -> bool:
        if value is None:
            return True
        return isinstance(value, OmittedValue) and (value.partial or value.reason == "truncated_in_output")

    def _save_run_info(self, session: RunSession, end_reason: Optional[EndReason], exit_code: int) -> bool:
        fingerprint = file_fingerprint(session.model_path)
        if fingerprint is None:
            logger.warning(f"Model file {session.model_path} disappeared; run info not saved")
            return False

        lines = list(session.capture.lines)
        kv = LoaderLogParser.build_kv(lines)
        if self._needs_file_tags(kv.get(TAGS_KEY)):
            tags = self._tag_reader(str(session.model_path))
            if tags:
                kv[TAGS_KEY] = ArrayValue(array_type="str", items=tags)

        info = CapturedRunInfo(
            model_name=session.model_name,
            gguf_path=str(session.model_path),
            gguf_size_bytes=fingerprint.size,
            gguf_mtime=fingerprint.mtime,
            captured_at=time.time(),
            llama_cpp_path=session.run_config.llama_cpp_path,
            captured_lines=lines,
            kv=kv,
            derived=LoaderLogParser.derive(kv, session.run_config.argv, lines),
            run_config=session.run_config,
            is_partial=end_reason != "exit" or exit_code != 0,
            end_reason=end_reason,
            exit_code=exit_code,
        )
        return self.run_info_store.save(info)

    def _close_process(self, session: RunSession) -> None:
        process = session.process
        if process is None:
            return
        if process.stdout is not None:
            try:
                process.stdout.close()
            except OSError as e:
                logger.debug(f"Error closing llama-server output: {e}")
        if process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=self.TERMINATE_TIMEOUT_SECONDS)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()

    def _finalize(self, session: RunSession, end_reason: EndReason, exit_code: int) -> None:
        if session.finalized:
            return
        session.finalized = True
        session.phase = RunPhase.FINALIZING
        session.exit_code = exit_code

        try:
            self._close_process(session)
            if session.capture.lines:
                try:
                    self._save_run_info(session, end_reason, exit_code)
                except Exception as e:
                    logger.error(f"Could not save run info for {session.model_name}: {e}")
        finally:
            self._record_end(session, end_reason, exit_code)

    def _record_end(self, session: RunSession, end_reason: EndReason, exit_code: int) -> None:
        self.manager.mark_stopped(session.model_name, exit_code)

        if end_reason == "sigint":
            status: RunStatus = "interrupted"
        elif exit_code != 0:
            status = "failed"
        else:
            status = "exited"
        self.history.add(session.model_name, status, exit_code)

        session.phase = _TERMINAL_PHASES[end_reason]
        logger.info(f"{session.model_name} finished: {status} (exit code {exit_code})")
