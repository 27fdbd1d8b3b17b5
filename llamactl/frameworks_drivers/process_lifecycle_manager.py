from __future__ import annotations

import json
import os
import signal
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from llamactl.entities.run_entry import RunEntry, RunMode, StateDocument
from llamactl.frameworks_drivers.config import AppPaths
from llamactl.frameworks_drivers.state_store import StateStore, utc_now_iso
from llamactl.shared.errors import (
    LaunchConflictError,
    LlamactlError,
    SignalResolutionError,
    SpawnFailureError,
    StateIOError,
)
from llamactl.shared.logger import Logger
from llamactl.shared.process_utils import find_pid_by_port, is_process_alive, read_pid_file

logger = Logger.get(__name__)


@dataclass
class StopAllResult:
    """Outcome of stopping every running server."""

    stopped: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return len(self.stopped)


class ProcessLifecycleManager:
    """
    Owns the state file and every state transition of tracked llama-server runs.

    The state file is a discovery aid for other tools, not the source of truth
    for process liveness: write failures are logged and otherwise ignored.
    """

    STOP_GRACE_SECONDS = 1.0
    LAUNCH_SETTLE_SECONDS = 0.5
    RECENTLY_STOPPED_LIMIT = 5

    def __init__(self, paths: AppPaths, store: Optional[StateStore] = None,
                 clock: Callable[[], str] = utc_now_iso):
        self.paths = paths
        self.store = store or StateStore(paths.state_file)
        self._clock = clock

    def get_state(self) -> StateDocument:
        return self.store.load()

    def _save(self, document: StateDocument) -> None:
        try:
            self.store.save(document)
        except StateIOError as e:
            logger.warning(f"State not persisted: {e}")

    def mark_running(self, model: str, port: Optional[int], mode: RunMode = "foreground") -> RunEntry:
        """
        Record a new running entry for the model, replacing any previous entry.

        Args:
            model: Model name without the .gguf extension.
            port: Port the server listens on, if known.
            mode: "foreground" or "daemon". Daemon entries carry their log file path.

        Returns:
            The new entry, with the PID not yet known.
        """
        document = self.store.load()
        document.servers = [entry for entry in document.servers if entry.model != model]

        entry = RunEntry(
            model=model,
            port=port,
            pid=None,
            mode=mode,
            log_file=str(self.paths.log_file_for(model)) if mode == "daemon" else None,
            state="running",
            started_at=self._clock(),
        )
        document.servers.insert(0, entry)
        document.last_used = model

        self._save(document)
        logger.info(f"Marked {model} running ({mode}, port {port})")
        return entry

    def update_pid(self, model: str, pid: int) -> None:
        """Patch the PID of the model's running entry. No-op if nothing is running."""
        document = self.store.load()
        entry = document.find_running(model)
        if entry is None:
            logger.debug(f"No running entry for {model}; PID {pid} not recorded")
            return

        entry.pid = pid
        self._save(document)
        logger.info(f"Recorded PID {pid} for {model}")

    def mark_stopped(self, model: str, exit_code: int = 0) -> None:
        """Transition the model's running entry to stopped. No-op if nothing is running."""
        document = self.store.load()
        entry = document.find_running(model)
        if entry is None:
            return

        entry.state = "stopped"
        entry.stopped_at = self._clock()
        entry.exit_code = exit_code
        self._save(document)
        logger.info(f"Marked {model} stopped (exit code {exit_code})")

    def is_running(self, model: str) -> Optional[RunEntry]:
        return self.store.load().find_running(model)

    def find_running(self, query: str) -> Optional[RunEntry]:
        """Return the first running entry whose model name contains the query (case-insensitive)."""
        query_lower = query.lower()
        for entry in self.store.load().running():
            if query_lower in entry.model.lower():
                return entry
        return None

    def launch_detached(self, model: str, command: list[str], port: Optional[int]) -> tuple[Optional[int], Path]:
        """
        Start llama-server detached from the terminal, logging to a per-model file.

        The entry is marked running before the spawn so that a crash before the
        PID is captured still leaves discoverable state.

        Args:
            model: Model name.
            command: Full llama-server argv.
            port: Port passed to the server.

        Returns:
            A tuple of (pid, log file path).

        Raises:
            LaunchConflictError: If the model is already tracked as running. Nothing is spawned.
            SpawnFailureError: If the process could not be created.
        """
        existing = self.is_running(model)
        if existing is not None:
            raise LaunchConflictError(model, pid=existing.pid, port=existing.port)

        log_path = self.paths.log_file_for(model)
        pid_path = self.paths.pid_file_for(model)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            pid_path.parent.mkdir(parents=True, exist_ok=True)
            # Truncate the log of the previous launch
            log_path.write_bytes(b"")
        except OSError as e:
            raise SpawnFailureError(model, e) from e

        self.mark_running(model, port, "daemon")

        logger.info(f"Launching {model} detached on port {port}, logging to {log_path}")
        try:
            with open(log_path, "ab") as log:
                process = subprocess.Popen(
                    command,
                    stdout=log,
                    stderr=subprocess.STDOUT,
                    stdin=subprocess.DEVNULL,
                    start_new_session=True,  # Detach from the controlling terminal
                )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn llama-server for {model}: {e}")
            self.mark_stopped(model, 1)
            raise SpawnFailureError(model, e) from e

        self._write_pid_file(pid_path, process.pid)

        time.sleep(self.LAUNCH_SETTLE_SECONDS)

        pid = read_pid_file(pid_path)
        if pid is None:
            pid = process.pid
        self.update_pid(model, pid)

        exit_code = process.poll()
        if exit_code is not None:
            logger.warning(f"{model} exited right after launch with code {exit_code}; see {log_path}")

        return pid, log_path

    @staticmethod
    def _write_pid_file(pid_path: Path, pid: int) -> None:
        try:
            pid_path.write_text(f"{pid}\n", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not write PID file {pid_path}: {e}")

    def _resolve_pid(self, entry: RunEntry) -> Optional[int]:
        """
        PID file first, then the PID recorded in the state file, then a lookup by port.

        Only daemon launches write a PID file; for foreground entries a leftover
        file belongs to an earlier daemon and is ignored.
        """
        if entry.mode == "daemon":
            pid = read_pid_file(self.paths.pid_file_for(entry.model))
            if pid is not None:
                return pid
        if entry.pid is not None:
            return entry.pid
        return find_pid_by_port(entry.port)

    @staticmethod
    def _send_signal(pid: int, sig: signal.Signals) -> bool:
        try:
            os.kill(pid, sig)
            return True
        except OSError as e:
            logger.warning(f"Could not send {sig.name} to PID {pid}: {e}")
            return False

    def stop_one(self, entry: RunEntry) -> int:
        """
        Stop a tracked server: SIGTERM, wait the grace interval, SIGKILL if still alive.

        The entry is always marked stopped, whether or not signals could be
        delivered, so the state file never keeps claiming a server runs after
        the caller asked to stop it.

        Args:
            entry: The running entry to stop.

        Returns:
            The PID that was signalled.

        Raises:
            SignalResolutionError: If no PID could be resolved.
        """
        pid = self._resolve_pid(entry)
        if pid is None:
            logger.warning(f"No PID found for {entry.model}; cannot send signal")
            self.mark_stopped(entry.model, 0)
            raise SignalResolutionError(entry.model)

        logger.info(f"Stopping {entry.model} (PID {pid})")
        self._send_signal(pid, signal.SIGTERM)
        time.sleep(self.STOP_GRACE_SECONDS)

        if is_process_alive(pid):
            logger.warning(f"{entry.model} (PID {pid}) did not exit after SIGTERM; sending SIGKILL")
            self._send_signal(pid, signal.SIGKILL)

        self.paths.pid_file_for(entry.model).unlink(missing_ok=True)
        self.mark_stopped(entry.model, 0)
        return pid

    def stop_all(self) -> StopAllResult:
        """Stop every running server independently, collecting per-model failures."""
        result = StopAllResult()
        for entry in self.store.load().running():
            try:
                self.stop_one(entry)
            except LlamactlError as e:
                result.failures[entry.model] = str(e)
            else:
                result.stopped.append(entry.model)
        return result

    def status(self, json_mode: bool = False) -> str:
        """
        Render the state file.

        Args:
            json_mode: Return the raw document as a single line of JSON.

        Returns:
            The rendered text.
        """
        document = self.store.load()
        if json_mode:
            return json.dumps(document.to_json())

        if not document.servers:
            return "\n".join([
                "No server state recorded yet.",
                f"State file: {self.store.path}",
            ])

        lines = [f"llamactl server state  ({self.store.path})", ""]

        running = document.running()
        if running:
            lines.append("RUNNING:")
            for entry in running:
                port_str = f"port {entry.port}" if entry.port is not None else "port unknown"
                pid_str = f"pid {entry.pid}" if entry.pid is not None else "pid unknown"
                lines.append(f"  {entry.model:<40}  {port_str}  {pid_str}  {entry.mode}")
                lines.append(f"  {'':<40}  started {entry.started_at}")
                if entry.log_file:
                    lines.append(f"  {'':<40}  log {entry.log_file}")
            lines.append("")

        stopped = document.stopped()[:self.RECENTLY_STOPPED_LIMIT]
        if stopped:
            lines.append("RECENTLY STOPPED:")
            for entry in stopped:
                port_str = f"port {entry.port}" if entry.port is not None else "port unknown"
                lines.append(f"  {entry.model:<40}  {port_str}  stopped {entry.stopped_at or 'unknown'}")
            lines.append("")

        if document.last_used:
            lines.append(f"Last used: {document.last_used}")

        return "\n".join(lines).rstrip("\n")
