import json
import time
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from llamactl.entities.history_entry import HistoryEntry, RunStatus
from llamactl.shared.json_io import atomic_write_json, load_json
from llamactl.shared.logger import Logger

logger = Logger.get(__name__)


class HistoryStore:
    """
    Run history kept in history.json, most recent first, one entry per model.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> List[HistoryEntry]:
        try:
            data = load_json(self.path)
        except FileNotFoundError:
            return []
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read history file {self.path}: {e}")
            return []

        entries = []
        for item in data if isinstance(data, list) else []:
            # Older files stored bare model names
            if isinstance(item, str):
                item = {"name": item, "last_run": 0}
            try:
                entries.append(HistoryEntry.model_validate(item))
            except ValidationError:
                logger.debug(f"Skipping malformed history entry: {item!r}")
        return entries

    def save(self, entries: List[HistoryEntry]) -> None:
        try:
            atomic_write_json(self.path, [entry.model_dump(exclude_none=True) for entry in entries])
        except OSError as e:
            logger.warning(f"Could not write history file {self.path}: {e}")

    def add(self, model: str, status: RunStatus = "running", exit_code: Optional[int] = None) -> None:
        """
        Record a run event.

        A model's ``running`` entry is completed in place; any other event
        replaces the model's previous entries with a new one at the top.
        """
        entries = self.load()
        now = time.time()

        for entry in entries:
            if entry.name == model and entry.status == "running":
                entry.status = status
                entry.end_time = now
                if exit_code is not None:
                    entry.exit_code = exit_code
                self.save(entries)
                return

        entries = [entry for entry in entries if entry.name != model]
        entries.insert(0, HistoryEntry(name=model, last_run=now, status=status, exit_code=exit_code))
        self.save(entries)

    def recent(self, limit: int) -> List[HistoryEntry]:
        return self.load()[:limit]

    def last_run(self, model: str) -> Optional[HistoryEntry]:
        for entry in self.load():
            if entry.name == model:
                return entry
        return None
