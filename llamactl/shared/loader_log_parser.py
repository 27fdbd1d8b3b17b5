"""
Parsing of the diagnostic lines llama-server prints while loading a model.

Example lines::

    llama_model_loader: - kv   2:                       llama.context_length u32              = 4096
    llama_model_loader: - kv  14:                      tokenizer.ggml.tokens arr[str,32000]   = ["<unk>", "<s>", ...
    llama_kv_cache_unified:      Metal KV buffer size =   512.00 MiB
"""
import re
from typing import Dict, List, Optional, Sequence, Tuple

from llamactl.entities.run_info import ArrayValue, DerivedValues, KVValue, OmittedValue, ScalarValue

KV_PARSE_WARNING_KEY = "_kv_parse_warning"


class LoaderLogParser:
    CAPTURE_PREFIXES = (
        "llama_model_loader:",
        "llama_model_load:",
        "llama_new_context_with_model:",
        "llama_kv_cache",
        "ggml_metal_",
        "gguf_",
        "system_info:",
        "main: ",
    )
    CAPTURE_SUBSTRINGS = ("load time", " mem ", "memory")

    # Arrays longer than this are never stored verbatim
    MAX_ARRAY_ENTRIES = 2048

    INTEGER_TYPES = frozenset({"u8", "i8", "u16", "i16", "u32", "i32", "u64", "i64"})
    FLOAT_TYPES = frozenset({"f32", "f64"})

    _ARRAY_LINE = re.compile(r"^(.*?)([\w.]+)\s+arr\[([^,\]]+),(\d+)\]\s*=\s*(.*)$")
    _KV_LINE = re.compile(r"^llama_model_loader:\s*-?\s*kv\s+\d+:\s*([\w.\-]+)\s+([\w\[\],]+)\s*=\s*(.+)$")
    _KV_LINE_NO_INDEX = re.compile(r"^llama_model_loader:\s*-?\s*kv\s*:\s*([\w.\-]+)\s+([\w\[\],]+)\s*=\s*(.+)$")
    _ARRAY_TYPE = re.compile(r"^arr\[([^,\]]+),(\d+)\]$")
    _CONTEXT_LENGTH_KEY = re.compile(r"([\w\-]+(?:\.[\w\-]+)*\.context_length)\b")
    _KV_CACHE_MIB = re.compile(r"llama_kv_cache.*\s(\d+(?:\.\d+)?)\s*MiB")
    _NUMBER = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?")

    @staticmethod
    def should_capture(line: str) -> bool:
        """Return True for loader, context, cache and system-info diagnostic lines."""
        if line.startswith(LoaderLogParser.CAPTURE_PREFIXES):
            return True
        return any(marker in line for marker in LoaderLogParser.CAPTURE_SUBSTRINGS)

    @staticmethod
    def sanitize_large_arrays(line: str) -> str:
        """Replace the printed value of an oversized array with an ``<omitted, N entries>`` marker."""
        match = LoaderLogParser._ARRAY_LINE.match(line)
        if not match:
            return line

        prefix, key, array_type, count, _ = match.groups()
        if int(count) > LoaderLogParser.MAX_ARRAY_ENTRIES:
            return f"{prefix}{key} arr[{array_type},{count}] = <omitted, {count} entries>"
        return line

    @staticmethod
    def parse_kv_line(line: str) -> Optional[Tuple[str, KVValue]]:
        """
        Parse a ``llama_model_loader: - kv N: key type = value`` line.

        Returns:
            A (key, value) tuple, or None if the line is not a kv line
        """
        match = LoaderLogParser._KV_LINE.match(line) or LoaderLogParser._KV_LINE_NO_INDEX.match(line)
        if not match:
            return None

        key, type_str, value_str = match.groups()
        value_str = value_str.strip()

        if type_str in LoaderLogParser.INTEGER_TYPES or type_str in LoaderLogParser.FLOAT_TYPES:
            number = LoaderLogParser._to_number(value_str, prefer_int=type_str in LoaderLogParser.INTEGER_TYPES)
            return key, ScalarValue(value=number if number is not None else value_str)
        if type_str == "bool":
            return key, ScalarValue(value=value_str == "true")
        if type_str == "str":
            if len(value_str) >= 2 and value_str.startswith('"') and value_str.endswith('"'):
                value_str = value_str[1:-1]
            return key, ScalarValue(value=value_str)

        array_match = LoaderLogParser._ARRAY_TYPE.match(type_str)
        if array_match:
            return key, LoaderLogParser._parse_array(array_match.group(1), int(array_match.group(2)), value_str)

        return key, ScalarValue(value=value_str)

    @staticmethod
    def _parse_array(array_type: str, count: int, value_str: str) -> KVValue:
        if value_str.startswith("<omitted"):
            return OmittedValue(array_type=array_type, count=count, reason="omitted")
        if "..." in value_str:
            return OmittedValue(array_type=array_type, count=count, reason="truncated_in_output", partial=True)
        if count > LoaderLogParser.MAX_ARRAY_ENTRIES:
            return OmittedValue(array_type=array_type, count=count, reason="omitted")

        if value_str.startswith("["):
            if array_type == "str":
                items = re.findall(r'"([^"]*)"', value_str)
                if items:
                    return ArrayValue(array_type=array_type, items=items)
            elif array_type in LoaderLogParser.INTEGER_TYPES or array_type in LoaderLogParser.FLOAT_TYPES:
                prefer_int = array_type in LoaderLogParser.INTEGER_TYPES
                numbers = [
                    LoaderLogParser._to_number(token, prefer_int=prefer_int)
                    for token in LoaderLogParser._NUMBER.findall(value_str)
                ]
                numbers = [n for n in numbers if n is not None]
                if numbers:
                    return ArrayValue(array_type=array_type, items=numbers)

        return OmittedValue(array_type=array_type, count=count, reason="unparsed", raw=value_str)

    @staticmethod
    def _to_number(text: str, prefer_int: bool):
        if prefer_int:
            try:
                return int(text)
            except ValueError:
                pass
        try:
            return float(text)
        except ValueError:
            return None

    @staticmethod
    def build_kv(captured_lines: Sequence[str]) -> Dict[str, KVValue]:
        """
        Parse every kv line of a capture into a dictionary.

        If a context-length key shows up in the captured text but did not make
        it into the dictionary, a ``_kv_parse_warning`` entry is recorded.
        """
        kv: Dict[str, KVValue] = {}
        for line in captured_lines:
            parsed = LoaderLogParser.parse_kv_line(line)
            if parsed:
                key, value = parsed
                kv[key] = value

        for line in captured_lines:
            match = LoaderLogParser._CONTEXT_LENGTH_KEY.search(line)
            if match:
                key = match.group(1)
                if key not in kv:
                    kv[KV_PARSE_WARNING_KEY] = ScalarValue(
                        value=f"missing {key} despite being in captured_lines"
                    )
                break

        return kv

    @staticmethod
    def context_length(kv: Dict[str, KVValue]) -> Optional[int]:
        """Training context length, preferring ``llama.context_length`` over other architectures."""
        candidates = ["llama.context_length"] + sorted(k for k in kv if k.endswith(".context_length"))
        for key in candidates:
            value = kv.get(key)
            if isinstance(value, ScalarValue) and isinstance(value.value, (int, float)) \
                    and not isinstance(value.value, bool):
                return int(value.value)
        return None

    @staticmethod
    def derive(kv: Dict[str, KVValue], argv: Sequence[str], captured_lines: List[str]) -> DerivedValues:
        """Compute tuning values from the parsed metadata and the launch argv."""
        derived = DerivedValues(ctx_train=LoaderLogParser.context_length(kv))

        # Later occurrences win, matching how llama-server parses repeated flags
        for i, arg in enumerate(argv[:-1]):
            value = argv[i + 1]
            if arg in ("-c", "--ctx-size"):
                try:
                    derived.ctx_runtime = int(value)
                except ValueError:
                    pass
            elif arg == "--cache-type-k":
                derived.cache_type_k = value
            elif arg == "--cache-type-v":
                derived.cache_type_v = value

        if derived.ctx_train and derived.ctx_runtime is not None:
            derived.ctx_ratio = derived.ctx_runtime / derived.ctx_train

        for line in captured_lines:
            match = LoaderLogParser._KV_CACHE_MIB.search(line)
            if match:
                derived.kv_cache_mib = float(match.group(1))
                break

        return derived
