from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

STATE_SCHEMA_VERSION = "1.0"

RunMode = Literal["foreground", "daemon"]
RunState = Literal["running", "stopped"]


class RunEntry(BaseModel):
    """One tracked llama-server run. The state file keeps at most one per model."""

    model_config = ConfigDict(protected_namespaces=())

    model: str = Field(min_length=1)
    port: Optional[int] = None
    pid: Optional[int] = None
    mode: RunMode = "foreground"
    log_file: Optional[str] = None
    state: RunState = "running"
    started_at: str
    stopped_at: Optional[str] = None
    exit_code: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return self.state == "running"

    def to_json(self) -> dict:
        """Serialize with ``port`` and ``pid`` always present (null when unknown)."""
        return {
            key: value
            for key, value in self.model_dump().items()
            if value is not None or key in ("port", "pid")
        }


class StateDocument(BaseModel):
    version: str = STATE_SCHEMA_VERSION
    last_used: Optional[str] = None
    servers: list[RunEntry] = Field(default_factory=list)

    def running(self) -> list[RunEntry]:
        return [entry for entry in self.servers if entry.is_running]

    def stopped(self) -> list[RunEntry]:
        return [entry for entry in self.servers if not entry.is_running]

    def find_running(self, model: str) -> Optional[RunEntry]:
        for entry in self.servers:
            if entry.model == model and entry.is_running:
                return entry
        return None

    def to_json(self) -> dict:
        data: dict = {"version": self.version}
        if self.last_used is not None:
            data["last_used"] = self.last_used
        data["servers"] = [entry.to_json() for entry in self.servers]
        return data
