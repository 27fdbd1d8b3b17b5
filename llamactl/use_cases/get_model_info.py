from datetime import datetime
from typing import List, Literal

from llamactl.entities.run_info import ArrayValue, CapturedRunInfo, KVValue, OmittedValue, ScalarValue
from llamactl.frameworks_drivers.run_info_store import RunInfoStore
from llamactl.shared.loader_log_parser import KV_PARSE_WARNING_KEY

InfoView = Literal["summary", "kv", "raw"]

KEY_METADATA = (
    "general.architecture",
    "general.name",
    "llama.context_length",
    "llama.embedding_length",
    "llama.block_count",
    "llama.rope.freq_base",
    "general.quantization_version",
    "general.file_type",
    "tokenizer.ggml.model",
)

_END_REASONS = {
    "sigint": "interrupted by user",
    "error": "error during run",
}


def _format_time(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


def _format_value(value: KVValue) -> str:
    if isinstance(value, ScalarValue):
        return str(value.value).lower() if isinstance(value.value, bool) else str(value.value)
    if isinstance(value, ArrayValue):
        return f"[array:{value.array_type}, count:{len(value.items)}]"
    if isinstance(value, OmittedValue):
        suffix = ", partial" if value.partial else ""
        return f"[array:{value.array_type}, count:{value.count}, {value.reason}{suffix}]"
    return str(value)


class GetModelInfo:
    """Renders the captured run info of a model as text."""

    def __init__(self, run_info_store: RunInfoStore, command_name: str = "llamactl"):
        self.run_info_store = run_info_store
        self.command_name = command_name

    def execute(self, model_name: str, view: InfoView = "summary") -> str:
        info, status = self.run_info_store.load(model_name)

        if info is None:
            return "\n".join([
                f"No cached info for model: {model_name}",
                "Run the model once to capture metadata:",
                f"  {self.command_name} run {model_name}",
            ])

        lines: List[str] = []
        if status == "gguf_missing":
            lines += ["Warning: GGUF file no longer exists", ""]
        elif status == "stale":
            lines += [
                "Warning: Cache is stale (GGUF has been modified)",
                "Run the model again to refresh cache:",
                f"  {self.command_name} run {model_name}",
                "",
            ]

        if info.is_partial:
            reason = _END_REASONS.get(info.end_reason, "non-zero exit") if info.end_reason else "run still in progress"
            lines += [f"Note: Partial capture ({reason}, exit code: {info.exit_code})", ""]

        warning = info.kv.get(KV_PARSE_WARNING_KEY)
        if isinstance(warning, ScalarValue):
            lines += [f"KV Parse Warning: {warning.value}", ""]

        if view == "kv":
            lines += self._render_kv(info)
        elif view == "raw":
            lines += info.captured_lines
        else:
            lines += self._render_summary(info, model_name)

        return "\n".join(lines).rstrip("\n")

    @staticmethod
    def _render_kv(info: CapturedRunInfo) -> List[str]:
        lines = ["Structured Model Metadata (KV):", ""]
        keys = sorted(key for key in info.kv if key != KV_PARSE_WARNING_KEY)
        if not keys:
            lines.append("  (no structured KV data)")
        for key in keys:
            lines.append(f"  {key}: {_format_value(info.kv[key])}")
        return lines

    def _render_summary(self, info: CapturedRunInfo, model_name: str) -> List[str]:
        lines = [
            f"Model Info: {info.model_name}",
            "",
            f"GGUF Path: {info.gguf_path}",
            f"GGUF Size: {info.gguf_size_bytes} bytes",
            f"GGUF Modified: {_format_time(info.gguf_mtime)}",
            f"Info Captured: {_format_time(info.captured_at)}",
        ]
        if info.llama_cpp_path:
            lines.append(f"llama.cpp: {info.llama_cpp_path}")
        lines.append(f"Exit Code: {info.exit_code}")
        if info.end_reason:
            lines.append(f"End Reason: {info.end_reason}")
        lines.append("")

        if info.run_config:
            lines.append("Run Configuration:")
            if info.run_config.host:
                lines.append(f"  Host: {info.run_config.host}")
            if info.run_config.port is not None:
                lines.append(f"  Port: {info.run_config.port}")
            lines.append(f"  Command: {' '.join(info.run_config.argv)}")
            lines.append("")

        present = [key for key in KEY_METADATA if key in info.kv]
        if present:
            lines.append("Key Metadata:")
            for key in present:
                lines.append(f"  {key}: {_format_value(info.kv[key])}")
            lines.append("")

        derived = info.derived
        if not derived.is_empty():
            lines.append("Derived (for tuning):")
            if derived.ctx_train is not None:
                lines.append(f"  Training context: {derived.ctx_train}")
            if derived.ctx_runtime is not None:
                lines.append(f"  Runtime context: {derived.ctx_runtime}")
            if derived.ctx_ratio is not None:
                lines.append(f"  Context ratio: {derived.ctx_ratio:.2f}")
            if derived.cache_type_k:
                lines.append(f"  Cache type K: {derived.cache_type_k}")
            if derived.cache_type_v:
                lines.append(f"  Cache type V: {derived.cache_type_v}")
            if derived.kv_cache_mib is not None:
                lines.append(f"  KV cache memory: {derived.kv_cache_mib} MiB")
            lines.append("")

        lines.append(f"Captured Metadata ({len(info.captured_lines)} lines):")
        lines.append("---")
        lines += info.captured_lines
        lines.append("")
        lines.append(f"Use '{self.command_name} info {model_name} --kv' to see all structured metadata")
        lines.append(f"Use '{self.command_name} info {model_name} --raw' to see raw captured output")
        return lines
