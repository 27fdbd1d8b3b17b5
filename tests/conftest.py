"""
Test configuration and fixtures for llamactl tests.
"""
import os
import shutil
import struct
import tempfile
from pathlib import Path
from typing import Any, Iterable, Tuple

import pytest

from llamactl.frameworks_drivers.config import AppPaths, LauncherConfig
from llamactl.frameworks_drivers.history_store import HistoryStore
from llamactl.frameworks_drivers.model_repository import ModelRepository
from llamactl.frameworks_drivers.process_lifecycle_manager import ProcessLifecycleManager
from llamactl.frameworks_drivers.run_info_store import RunInfoStore
from llamactl.frameworks_drivers.state_store import StateStore

GGUF_UINT32 = 4
GGUF_STRING = 8
GGUF_ARRAY = 9


def _gguf_string(text: str) -> bytes:
    data = text.encode("utf-8")
    return struct.pack("<Q", len(data)) + data


def _gguf_value(value_type: int, value: Any) -> bytes:
    if value_type == GGUF_UINT32:
        return struct.pack("<I", value)
    if value_type == GGUF_STRING:
        return _gguf_string(value)
    if value_type == GGUF_ARRAY:
        element_type, items = value
        body = struct.pack("<IQ", element_type, len(items))
        return body + b"".join(_gguf_value(element_type, item) for item in items)
    raise ValueError(f"unsupported test value type {value_type}")


def build_gguf(path: Path, entries: Iterable[Tuple[str, int, Any]], version: int = 3,
               magic: bytes = b"GGUF") -> Path:
    """Write a minimal GGUF file holding only a metadata section."""
    entries = list(entries)
    data = magic + struct.pack("<IQQ", version, 0, len(entries))
    for key, value_type, value in entries:
        data += _gguf_string(key) + struct.pack("<I", value_type) + _gguf_value(value_type, value)
    Path(path).write_bytes(data)
    return Path(path)


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    temp_path = tempfile.mkdtemp()
    yield Path(temp_path)
    shutil.rmtree(temp_path)


@pytest.fixture
def app_paths(temp_dir):
    return AppPaths(config_dir=temp_dir / "config", cache_dir=temp_dir / "cache")


@pytest.fixture
def models_dir(temp_dir):
    path = temp_dir / "models"
    path.mkdir()
    return path


@pytest.fixture
def launcher_config(models_dir):
    """Launcher configuration pointing at the temporary models directory."""
    return LauncherConfig(
        llama_cpp_path="/opt/llama/llama-server",
        models_dir=str(models_dir),
        default_params=["-c 4096", "--host 127.0.0.1"],
        model_overrides={"coder": ["--temp 0.2"]},
    )


@pytest.fixture
def make_model(models_dir):
    """Factory creating ``<name>.gguf`` files with a given modification time."""

    def _make(name: str, mtime: float = 1_700_000_000.0, content: bytes = b"GGUF") -> Path:
        path = models_dir / f"{name}.gguf"
        path.write_bytes(content)
        os.utime(path, (mtime, mtime))
        return path

    return _make


@pytest.fixture
def repository(models_dir):
    return ModelRepository(models_dir)


@pytest.fixture
def state_store(app_paths):
    return StateStore(app_paths.state_file)


@pytest.fixture
def manager(app_paths, state_store):
    """Lifecycle manager with a fixed clock."""
    return ProcessLifecycleManager(app_paths, state_store, clock=lambda: "2024-05-01T12:00:00Z")


@pytest.fixture
def history_store(app_paths):
    return HistoryStore(app_paths.history_file)


@pytest.fixture
def run_info_store(app_paths):
    return RunInfoStore(app_paths.model_info_dir)


@pytest.fixture
def gguf_builder():
    """The :func:`build_gguf` helper, for tests that need real GGUF headers."""
    return build_gguf
