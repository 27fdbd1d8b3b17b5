from pathlib import Path

from pydantic import BaseModel, Field


class ModelFile(BaseModel):
    """A local GGUF model file, identified by its name without extension."""

    name: str = Field(min_length=1)
    path: Path
    size: int = Field(ge=0)
    mtime: float
