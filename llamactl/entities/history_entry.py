from typing import Literal, Optional

from pydantic import BaseModel

RunStatus = Literal["running", "exited", "interrupted", "failed"]


class HistoryEntry(BaseModel):
    name: str
    last_run: float
    status: RunStatus = "running"
    end_time: Optional[float] = None
    exit_code: Optional[int] = None
