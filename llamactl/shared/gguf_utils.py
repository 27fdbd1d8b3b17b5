"""
Utility for recovering metadata fields directly from GGUF model files.

Only the header and the metadata key-value section are walked; tensor info and
tensor data are never touched.
"""
from typing import BinaryIO, List, Optional
import struct


class GGUFFormatError(ValueError):
    """Raised internally when the metadata section cannot be walked."""


class GGUFUtils:
    MAGIC = b'GGUF'  # 0x46554747 read as a little-endian uint32
    MIN_VERSION = 2
    MAX_STRING_LENGTH = 1_000_000

    # GGUF value types:
    # 0 = UINT8, 1 = INT8, 2 = UINT16, 3 = INT16, 4 = UINT32, 5 = INT32
    # 6 = FLOAT32, 7 = BOOL, 8 = STRING, 9 = ARRAY, 10 = UINT64, 11 = INT64, 12 = FLOAT64
    TYPE_STRING = 8
    TYPE_ARRAY = 9
    FIXED_WIDTHS = {
        0: 1,
        1: 1,
        2: 2,
        3: 2,
        4: 4,
        5: 4,
        6: 4,
        7: 1,
        10: 8,
        11: 8,
        12: 8,
    }

    @staticmethod
    def read_named_array(model_path: str, key: str) -> Optional[List[str]]:
        """
        Read a string array stored under ``key`` in the GGUF metadata section.

        Args:
            model_path: Path to the GGUF model file
            key: Metadata key to look for (e.g. ``general.tags``)

        Returns:
            The ordered list of strings, or None if the file is not a GGUF file,
            is truncated, does not contain the key, or stores something other
            than a string array under it.
        """
        try:
            with open(model_path, 'rb') as f:
                # Read GGUF header
                if f.read(4) != GGUFUtils.MAGIC:
                    return None

                version = GGUFUtils._read_u32(f)
                if version < GGUFUtils.MIN_VERSION:
                    return None

                # Tensor count is not needed, only the metadata count
                GGUFUtils._read_u64(f)
                metadata_kv_count = GGUFUtils._read_u64(f)

                for _ in range(metadata_kv_count):
                    name = GGUFUtils._read_string(f)
                    if name is None:
                        return None

                    value_type = GGUFUtils._read_u32(f)
                    if name == key:
                        return GGUFUtils._read_string_array(f, value_type)

                    GGUFUtils._skip_value(f, value_type)

                return None

        except (OSError, OverflowError, struct.error, ValueError):
            return None

    @staticmethod
    def read_general_tags(model_path: str) -> Optional[List[str]]:
        """Read the full ``general.tags`` array from a GGUF file."""
        return GGUFUtils.read_named_array(model_path, "general.tags")

    @staticmethod
    def _read_u32(f: BinaryIO) -> int:
        return struct.unpack('<I', f.read(4))[0]

    @staticmethod
    def _read_u64(f: BinaryIO) -> int:
        return struct.unpack('<Q', f.read(8))[0]

    @staticmethod
    def _read_string(f: BinaryIO) -> Optional[str]:
        """
        Read a length-prefixed string.

        Strings longer than MAX_STRING_LENGTH are seeked past and None is
        returned instead of loading them into memory.
        """
        length = GGUFUtils._read_u64(f)
        if length == 0:
            return ""
        if length > GGUFUtils.MAX_STRING_LENGTH:
            f.seek(length, 1)
            return None

        data = f.read(length)
        if len(data) != length:
            raise GGUFFormatError("truncated string")
        return data.decode('utf-8', errors='replace')

    @staticmethod
    def _read_string_array(f: BinaryIO, value_type: int) -> Optional[List[str]]:
        if value_type != GGUFUtils.TYPE_ARRAY:
            return None

        element_type = GGUFUtils._read_u32(f)
        count = GGUFUtils._read_u64(f)
        if element_type != GGUFUtils.TYPE_STRING:
            return None

        values = []
        for _ in range(count):
            value = GGUFUtils._read_string(f)
            if value is None:
                return None
            values.append(value)
        return values

    @staticmethod
    def _skip_value(f: BinaryIO, value_type: int) -> None:
        """
        Skip a metadata value based on its type.

        Raises:
            GGUFFormatError: On an unknown type or a nested array.
        """
        width = GGUFUtils.FIXED_WIDTHS.get(value_type)
        if width is not None:
            f.seek(width, 1)
        elif value_type == GGUFUtils.TYPE_STRING:
            length = GGUFUtils._read_u64(f)
            f.seek(length, 1)
        elif value_type == GGUFUtils.TYPE_ARRAY:
            element_type = GGUFUtils._read_u32(f)
            count = GGUFUtils._read_u64(f)
            if element_type == GGUFUtils.TYPE_ARRAY:
                raise GGUFFormatError("nested arrays are not supported")

            element_width = GGUFUtils.FIXED_WIDTHS.get(element_type)
            if element_width is not None:
                f.seek(element_width * count, 1)
            elif element_type == GGUFUtils.TYPE_STRING:
                for _ in range(count):
                    GGUFUtils._skip_value(f, GGUFUtils.TYPE_STRING)
            else:
                raise GGUFFormatError(f"unknown array element type {element_type}")
        else:
            raise GGUFFormatError(f"unknown value type {value_type}")
