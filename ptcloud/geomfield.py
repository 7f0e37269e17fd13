"""Typed per-point data arrays."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import Iterable, Optional, Sequence

import numpy as np


class ScalarType(IntEnum):
    """Base numeric type of a field element."""

    UNKNOWN = 0
    INT = 1
    UINT = 2
    FLOAT = 3


class Semantics(IntEnum):
    """Interpretation of the components of a field element."""

    ARRAY = 0
    VECTOR = 1
    COLOR = 2


_DTYPE_CODES = {
    ScalarType.INT: {1: "i1", 2: "i2", 4: "i4", 8: "i8"},
    ScalarType.UINT: {1: "u1", 2: "u2", 4: "u4", 8: "u8"},
    ScalarType.FLOAT: {4: "f4", 8: "f8"},
}


@dataclass(frozen=True)
class TypeSpec:
    """Type of one element of a field: base type, element size and count."""

    type: ScalarType
    elsize: int
    count: int = 1
    semantics: Semantics = Semantics.ARRAY
    fixed_point: bool = False

    @classmethod
    def vec3float32(cls) -> "TypeSpec":
        return cls(ScalarType.FLOAT, 4, 3, Semantics.VECTOR)

    @classmethod
    def float32(cls) -> "TypeSpec":
        return cls(ScalarType.FLOAT, 4)

    @classmethod
    def uint32(cls) -> "TypeSpec":
        return cls(ScalarType.UINT, 4)

    @classmethod
    def uint16_i(cls) -> "TypeSpec":
        return cls(ScalarType.UINT, 2)

    @classmethod
    def uint8_i(cls) -> "TypeSpec":
        return cls(ScalarType.UINT, 1)

    def size(self) -> int:
        """Bytes per element."""
        return self.elsize * self.count

    def is_array(self) -> bool:
        return self.semantics == Semantics.ARRAY

    def array_size(self) -> int:
        return self.count if self.is_array() else 1

    def vector_size(self) -> int:
        return 1 if self.is_array() else self.count

    @property
    def dtype(self) -> np.dtype:
        try:
            return np.dtype(_DTYPE_CODES[self.type][self.elsize])
        except KeyError:
            raise ValueError(f"Unsupported field type: {self!r}") from None

    def _base_name(self) -> str:
        if self.type == ScalarType.FLOAT:
            return {4: "float", 8: "double"}.get(self.elsize, "?")
        if self.type == ScalarType.INT:
            return f"int{8 * self.elsize}_t"
        if self.type == ScalarType.UINT:
            return f"uint{8 * self.elsize}_t"
        return "unknown"

    def __str__(self) -> str:
        text = f"{self.semantics.name.lower()} {self._base_name()}"
        if self.count > 1:
            text += f"[{self.count}]"
        return text


@dataclass
class GeomField:
    """Named array holding ``spec.count`` values of the base type per point.

    ``data`` has shape ``(size, spec.count)``.
    """

    spec: TypeSpec
    name: str
    size: int
    data: Optional[np.ndarray] = None

    def __post_init__(self) -> None:
        if self.data is None:
            self.data = np.zeros((self.size, self.spec.count), dtype=self.spec.dtype)
        else:
            self.data = np.asarray(self.data, dtype=self.spec.dtype).reshape(
                self.size, self.spec.count
            )

    def nbytes(self) -> int:
        """Bytes of data per point."""
        return self.spec.array_size() * self.spec.vector_size() * self.spec.elsize

    def format_value(self, index: int) -> str:
        """Human readable form of the value for point ``index``."""
        row = self.data[index]
        if self.spec.type == ScalarType.FLOAT:
            fmt = "%.7g" if self.spec.elsize == 4 else "%.16g"
            parts = [fmt % float(v) for v in row]
        else:
            parts = ["%d" % int(v) for v in row]
        return " ".join(parts)

    def __str__(self) -> str:
        return f"{self.spec} {self.name}"


def reorder(field: GeomField, inds: Sequence[int]) -> None:
    """Permute the points of ``field`` in place so new point i is old point inds[i]."""
    if field.size == 1:
        return
    if len(inds) != field.size:
        raise ValueError(
            f"Index array length {len(inds)} does not match field size {field.size}"
        )
    field.data = field.data[np.asarray(inds, dtype=np.intp)]


def total_bytes(fields: Iterable[GeomField]) -> int:
    """Bytes per point summed over all fields."""
    return sum(f.nbytes() for f in fields)