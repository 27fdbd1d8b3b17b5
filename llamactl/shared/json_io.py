"""JSON file helpers shared by the state, history and model info stores."""
import json
import os
from pathlib import Path
from typing import Any


def load_json(path: Path) -> Any:
    """Load a JSON document.

    Raises:
        FileNotFoundError: If the file does not exist
        json.JSONDecodeError: If the file is not valid JSON
    """
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def atomic_write_json(path: Path, data: Any) -> Path:
    """Write a JSON document via a temporary file and an atomic rename.

    Readers see either the previous document or the new one, never a
    partially written file.

    Raises:
        OSError: If the directory cannot be created or the write fails
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + f".{os.getpid()}.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise
    return path
