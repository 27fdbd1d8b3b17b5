import shlex
from typing import Optional, Sequence

from llamactl.frameworks_drivers.config import LauncherConfig
from llamactl.frameworks_drivers.model_repository import ModelRepository


def flag_value(argv: Sequence[str], flag: str) -> Optional[str]:
    """Return the value following the last occurrence of ``flag`` in argv."""
    value = None
    for i, arg in enumerate(argv[:-1]):
        if arg == flag:
            value = argv[i + 1]
    return value


def port_from_argv(argv: Sequence[str]) -> Optional[int]:
    value = flag_value(argv, "--port")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def format_command(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(arg) for arg in argv)


class CommandBuilder:
    """
    Builds the llama-server argv for a model.

    Order: binary and model path, configured defaults, the first matching
    per-model override, then caller-supplied arguments. llama-server keeps
    the last value of a repeated flag, so later groups take priority.
    """

    def __init__(self, config: LauncherConfig, repository: ModelRepository):
        self.config = config
        self.repository = repository

    @staticmethod
    def _split(params: Sequence[str]) -> list[str]:
        tokens = []
        for param in params:
            tokens.extend(param.split())
        return tokens

    def build(self, model_name: str, extra_args: Optional[Sequence[str]] = None) -> list[str]:
        argv = [
            self.config.expanded_llama_cpp_path,
            "-m",
            str(self.repository.model_path(model_name)),
        ]
        argv.extend(self._split(self.config.default_params))

        override = self.config.override_for(model_name)
        if override:
            argv.extend(self._split(override))

        if extra_args:
            argv.extend(extra_args)
        return argv

    def build_detached(self, model_name: str, port: int, extra_args: Optional[Sequence[str]] = None) -> list[str]:
        """Build the argv for a detached launch, pinning the port last."""
        return self.build(model_name, list(extra_args or []) + ["--port", str(port)])
