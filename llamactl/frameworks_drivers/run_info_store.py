import json
from pathlib import Path
from typing import Literal, Optional, Tuple

from pydantic import ValidationError

from llamactl.entities.run_info import CapturedRunInfo
from llamactl.frameworks_drivers.config import safe_name
from llamactl.frameworks_drivers.model_repository import file_fingerprint
from llamactl.shared.json_io import atomic_write_json, load_json
from llamactl.shared.logger import Logger

logger = Logger.get(__name__)

CacheStatus = Literal["no_cache", "gguf_missing", "stale", "valid"]


class RunInfoStore:
    """
    Captured run metadata, one JSON file per model under the model_info directory.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, model_name: str) -> Path:
        return self.directory / f"{safe_name(model_name)}.json"

    def save(self, info: CapturedRunInfo) -> bool:
        path = self.path_for(info.model_name)
        try:
            atomic_write_json(path, info.model_dump(mode="json"))
        except OSError as e:
            logger.warning(f"Could not write model info {path}: {e}")
            return False
        return True

    def load(self, model_name: str) -> Tuple[Optional[CapturedRunInfo], CacheStatus]:
        """
        Load captured info and compare its fingerprint with the model file on disk.

        Returns:
            (info, status) where status is one of no_cache, gguf_missing, stale or valid
        """
        path = self.path_for(model_name)
        try:
            info = CapturedRunInfo.model_validate(load_json(path))
        except FileNotFoundError:
            return None, "no_cache"
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable model info {path}: {e}")
            return None, "no_cache"

        current = file_fingerprint(Path(info.gguf_path))
        if current is None:
            return info, "gguf_missing"
        if current != info.fingerprint:
            return info, "stale"
        return info, "valid"

    def list_models(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(path.stem for path in self.directory.glob("*.json"))
