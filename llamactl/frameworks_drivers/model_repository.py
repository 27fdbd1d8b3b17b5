from pathlib import Path
from typing import Optional

from llamactl.entities.model import ModelFile
from llamactl.entities.run_info import Fingerprint

GGUF_SUFFIX = ".gguf"


def file_fingerprint(path: Path) -> Optional[Fingerprint]:
    """Return the (size, mtime) fingerprint of a file, or None if it does not exist."""
    try:
        stat = Path(path).stat()
    except OSError:
        return None
    return Fingerprint(size=stat.st_size, mtime=stat.st_mtime)


class ModelRepository:
    """Local GGUF models found in the configured models directory."""

    def __init__(self, models_dir: Path):
        self.models_dir = Path(models_dir)

    def model_path(self, model_name: str) -> Path:
        return self.models_dir / f"{model_name}{GGUF_SUFFIX}"

    def exists(self, model_name: str) -> bool:
        return self.model_path(model_name).is_file()

    def fingerprint(self, model_name: str) -> Optional[Fingerprint]:
        return file_fingerprint(self.model_path(model_name))

    def list_models(self) -> list[ModelFile]:
        """Return every model in the directory, most recently modified first."""
        if not self.models_dir.is_dir():
            return []

        models = []
        for path in self.models_dir.iterdir():
            if path.suffix != GGUF_SUFFIX or not path.is_file():
                continue
            stat = path.stat()
            models.append(ModelFile(name=path.stem, path=path, size=stat.st_size, mtime=stat.st_mtime))

        models.sort(key=lambda model: model.mtime, reverse=True)
        return models
