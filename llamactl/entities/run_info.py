from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

RUN_INFO_SCHEMA_VERSION = 1

EndReason = Literal["exit", "sigint", "error"]


class ScalarValue(BaseModel):
    kind: Literal["scalar"] = "scalar"
    value: Union[bool, int, float, str]


class ArrayValue(BaseModel):
    kind: Literal["array"] = "array"
    array_type: str
    items: list[Union[int, float, str]]


class OmittedValue(BaseModel):
    """An array the loader printed only partially, or not at all."""

    kind: Literal["omitted"] = "omitted"
    array_type: str
    count: int
    reason: Literal["omitted", "truncated_in_output", "unparsed"]
    partial: bool = False
    raw: Optional[str] = None


KVValue = Annotated[Union[ScalarValue, ArrayValue, OmittedValue], Field(discriminator="kind")]


class Fingerprint(BaseModel):
    size: int
    mtime: float


class DerivedValues(BaseModel):
    ctx_train: Optional[int] = None
    ctx_runtime: Optional[int] = None
    ctx_ratio: Optional[float] = None
    cache_type_k: Optional[str] = None
    cache_type_v: Optional[str] = None
    kv_cache_mib: Optional[float] = None

    def is_empty(self) -> bool:
        return all(value is None for value in self.model_dump().values())


class RunConfig(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    llama_cpp_path: str
    argv: list[str]
    models_dir: str
    model_name: str
    extra_args: list[str] = Field(default_factory=list)
    host: Optional[str] = None
    port: Optional[int] = None


class CapturedRunInfo(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    schema_version: int = RUN_INFO_SCHEMA_VERSION
    model_name: str
    gguf_path: str
    gguf_size_bytes: int
    gguf_mtime: float
    captured_at: float
    llama_cpp_path: Optional[str] = None
    captured_lines: list[str] = Field(default_factory=list)
    kv: dict[str, KVValue] = Field(default_factory=dict)
    derived: DerivedValues = Field(default_factory=DerivedValues)
    run_config: Optional[RunConfig] = None
    is_partial: bool = True
    end_reason: Optional[EndReason] = None
    exit_code: int = 0

    @property
    def fingerprint(self) -> Fingerprint:
        return Fingerprint(size=self.gguf_size_bytes, mtime=self.gguf_mtime)
