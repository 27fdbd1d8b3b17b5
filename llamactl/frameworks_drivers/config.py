import json
import os
import re
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from llamactl.shared.logger import Logger

logger = Logger.get(__name__)

APP_NAME = "llamactl"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_name(model_name: str) -> str:
    """Turn a model name into a file-name-safe token.

    Every character outside ``[A-Za-z0-9._-]`` becomes ``_``.
    """
    return _UNSAFE_CHARS.sub("_", model_name)


def expand_path(path: str) -> str:
    return os.path.expanduser(path)


class LauncherConfig(BaseModel):
    """Configuration for launching llama-server.

    Attributes:
        llama_cpp_path: Path to the llama-server binary.
        models_dir: Directory holding ``*.gguf`` model files.
        default_port: Port used for detached launches when none is given.
        default_params: Parameters added to every launch, each split on whitespace.
        model_overrides: Regex pattern (searched in the model name) to extra parameters.
        recent_models_count: Number of recent models kept visible in listings.
    """

    model_config = ConfigDict(protected_namespaces=())

    llama_cpp_path: str = Field("/usr/local/bin/llama-server", description="Path to the llama-server binary")
    models_dir: str = Field("~/models", description="Directory holding GGUF model files")
    default_port: int = Field(8080, ge=1, le=65535, description="Default port for detached launches")
    default_params: List[str] = Field(
        default_factory=lambda: ["-c 4096", "--host 127.0.0.1"],
        description="Parameters added to every launch",
    )
    model_overrides: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Regex pattern to extra parameters for matching models",
    )
    recent_models_count: int = Field(7, ge=0, description="Number of recent models to show")

    @property
    def expanded_llama_cpp_path(self) -> str:
        return expand_path(self.llama_cpp_path)

    @property
    def expanded_models_dir(self) -> Path:
        return Path(expand_path(self.models_dir))

    def override_for(self, model_name: str) -> Optional[List[str]]:
        """Return the parameters of the first override pattern matching the model name."""
        for pattern, params in self.model_overrides.items():
            try:
                if re.search(pattern, model_name):
                    return params
            except re.error as e:
                logger.warning(f"Ignoring invalid model_overrides pattern {pattern!r}: {e}")
        return None

    @classmethod
    def load(cls, config_path: str | Path) -> "LauncherConfig":
        """Load and validate configuration from JSON file."""
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        return cls(**data)

    @classmethod
    def load_or_create(cls, config_path: str | Path) -> "LauncherConfig":
        """Load the configuration, writing the defaults first if the file does not exist."""
        path = Path(config_path)
        if not path.exists():
            logger.info(f"Creating default configuration at {path}")
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                json.dump(cls().model_dump(), f, indent=2)
                f.write("\n")
        return cls.load(path)


class AppPaths(BaseModel):
    """On-disk locations used by llamactl.

    Attributes:
        config_dir: Holds config.json, history.json and captured model info.
        cache_dir: Holds state.json, PID files and daemon logs.
    """

    config_dir: Path
    cache_dir: Path

    @classmethod
    def from_env(cls) -> "AppPaths":
        home = Path.home()
        config_root = os.environ.get("XDG_CONFIG_HOME") or str(home / ".config")
        cache_root = os.environ.get("XDG_CACHE_HOME") or str(home / ".cache")
        return cls(config_dir=Path(config_root) / APP_NAME, cache_dir=Path(cache_root) / APP_NAME)

    @property
    def config_file(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def history_file(self) -> Path:
        return self.config_dir / "history.json"

    @property
    def model_info_dir(self) -> Path:
        return self.config_dir / "model_info"

    @property
    def state_file(self) -> Path:
        return self.cache_dir / "state.json"

    @property
    def pids_dir(self) -> Path:
        return self.cache_dir / "pids"

    @property
    def logs_dir(self) -> Path:
        return self.cache_dir / "logs"

    def pid_file_for(self, model_name: str) -> Path:
        return self.pids_dir / f"{safe_name(model_name)}.pid"

    def log_file_for(self, model_name: str) -> Path:
        return self.logs_dir / f"{safe_name(model_name)}.log"

    def model_info_file_for(self, model_name: str) -> Path:
        return self.model_info_dir / f"{safe_name(model_name)}.json"
