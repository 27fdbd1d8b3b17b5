import json
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from llamactl.entities.run_entry import RunEntry, StateDocument
from llamactl.shared.errors import StateIOError
from llamactl.shared.json_io import atomic_write_json, load_json
from llamactl.shared.logger import Logger

logger = Logger.get(__name__)


def utc_now_iso() -> str:
    """Current time as an ISO 8601 UTC timestamp with a ``Z`` suffix."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class StateStore:
    """
    Reads and writes the state.json document listing tracked servers.

    The whole document is rewritten on every save through an atomic rename.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> StateDocument:
        """
        Load the state document.

        A missing, unreadable or malformed file yields an empty document;
        individual malformed server entries are skipped.
        """
        try:
            data = load_json(self.path)
        except FileNotFoundError:
            return StateDocument()
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read state file {self.path}: {e}")
            return StateDocument()

        if not isinstance(data, dict):
            logger.warning(f"Ignoring state file {self.path}: top-level value is not an object")
            return StateDocument()
        servers = []
        for item in data.get("servers") if isinstance(data.get("servers"), list) else []:
            try:
                servers.append(RunEntry.model_validate(item))
            except ValidationError:
                logger.warning(f"Skipping malformed server entry in {self.path}: {item!r}")

        last_used = data.get("last_used")
        return StateDocument(
            last_used=last_used if isinstance(last_used, str) else None,
            servers=servers,
        )

    def save(self, document: StateDocument) -> None:
        """
        Persist the state document.

        Raises:
            StateIOError: If the file cannot be written
        """
        try:
            atomic_write_json(self.path, document.to_json())
        except OSError as e:
            raise StateIOError(f"could not write {self.path}: {e}") from e
