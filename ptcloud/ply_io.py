"""Reading PLY files and mapping their vertex data onto point fields."""

from __future__ import annotations

import logging
import re
import struct
from dataclasses import dataclass, field
from itertools import groupby
from pathlib import Path
from typing import Any, BinaryIO, Optional

import numpy as np

from ptcloud.geomfield import GeomField, ScalarType, Semantics, TypeSpec
from ptcloud.hcloud import Vec3

_log = logging.getLogger(__name__)

_SCALAR_TYPES = {
    "char": "i1",
    "int8": "i1",
    "uchar": "u1",
    "uint8": "u1",
    "short": "i2",
    "int16": "i2",
    "ushort": "u2",
    "uint16": "u2",
    "int": "i4",
    "int32": "i4",
    "uint": "u4",
    "uint32": "u4",
    "float": "f4",
    "float32": "f4",
    "double": "f8",
    "float64": "f8",
}

_STRUCT_CODES = {"i1": "b", "u1": "B", "i2": "h", "u2": "H", "i4": "i", "u4": "I", "f4": "f", "f8": "d"}

_FORMATS = {"ascii": None, "binary_little_endian": "<", "binary_big_endian": ">"}

_KIND_TO_SCALAR = {"i": ScalarType.INT, "u": ScalarType.UINT, "f": ScalarType.FLOAT}

_MESH_ELEMENTS = ("face", "edge", "polygon")

# Some property names commonly found in ply files, with the field they map to.
# There is no standard for this.
_STANDARD_FIELDS = (
    ("position", 0, Semantics.VECTOR, "x"),
    ("position", 1, Semantics.VECTOR, "y"),
    ("position", 2, Semantics.VECTOR, "z"),
    ("color", 0, Semantics.COLOR, "red"),
    ("color", 1, Semantics.COLOR, "green"),
    ("color", 2, Semantics.COLOR, "blue"),
    ("color", 0, Semantics.COLOR, "r"),
    ("color", 1, Semantics.COLOR, "g"),
    ("color", 2, Semantics.COLOR, "b"),
    ("normal", 0, Semantics.VECTOR, "nx"),
    ("normal", 1, Semantics.VECTOR, "ny"),
    ("normal", 2, Semantics.VECTOR, "nz"),
)

_VEC3_COMPONENT = re.compile(r"(.*)_?([xyz])")
_ARRAY_COMPONENT = re.compile(r"(.*)\[([0-9]+)\]")


class PlyError(Exception):
    """Raised when a PLY file is malformed or cannot be mapped to point fields."""


@dataclass
class PlyProperty:
    """A property of a PLY element; ``count_type`` is set for list properties.

    After reading, ``data`` holds a numpy array for scalar properties or a
    list of numpy arrays (one per element instance) for list properties.
    """

    name: str
    type: str
    count_type: Optional[str] = None
    data: Any = None

    @property
    def is_list(self) -> bool:
        return self.count_type is not None

    @property
    def dtype(self) -> np.dtype:
        return np.dtype(_SCALAR_TYPES[self.type])

    @property
    def count_dtype(self) -> np.dtype:
        if self.count_type is None:
            raise PlyError(f"Property {self.name} is not a list")
        return np.dtype(_SCALAR_TYPES[self.count_type])


@dataclass
class PlyElement:
    """A named PLY element with its number of instances and properties."""

    name: str
    count: int
    properties: list[PlyProperty] = field(default_factory=list)

    def property(self, name: str) -> Optional[PlyProperty]:
        return next((p for p in self.properties if p.name == name), None)


@dataclass
class PlyFile:
    """Header and data of a PLY file."""

    format: str
    elements: list[PlyElement] = field(default_factory=list)
    comments: list[str] = field(default_factory=list)
    path: Optional[Path] = None

    def element(self, name: str) -> Optional[PlyElement]:
        return next((e for e in self.elements if e.name == name), None)


def _check_type(type_name: str) -> str:
    if type_name not in _SCALAR_TYPES:
        raise PlyError(f"Unknown ply property type: {type_name}")
    return type_name


def _parse_header(stream: BinaryIO) -> PlyFile:
    if stream.readline().rstrip(b"\r\n") != b"ply":
        raise PlyError("Bad magic number: not a ply file")
    fmt: Optional[str] = None
    elements: list[PlyElement] = []
    comments: list[str] = []
    while True:
        raw = stream.readline()
        if not raw:
            raise PlyError("Unexpected end of ply header")
        line = raw.decode("ascii", errors="replace")
        words = line.split()
        if not words:
            continue
        keyword = words[0]
        if keyword == "end_header":
            break
        if keyword == "format":
            if len(words) != 3 or words[1] not in _FORMATS:
                raise PlyError(f"Unsupported ply format line: {line.strip()}")
            fmt = words[1]
        elif keyword in ("comment", "obj_info"):
            comments.append(line.strip()[len(keyword):].strip())
        elif keyword == "element":
            if len(words) != 3:
                raise PlyError(f"Bad element line: {line.strip()}")
            try:
                count = int(words[2])
            except ValueError:
                raise PlyError(f"Bad element count: {line.strip()}") from None
            if count < 0:
                raise PlyError(f"Bad element count: {line.strip()}")
            elements.append(PlyElement(words[1], count))
        elif keyword == "property":
            if not elements:
                raise PlyError("Property declared before any element")
            if len(words) >= 2 and words[1] == "list":
                if len(words) != 5:
                    raise PlyError(f"Bad list property line: {line.strip()}")
                prop = PlyProperty(words[4], _check_type(words[3]), _check_type(words[2]))
            else:
                if len(words) != 3:
                    raise PlyError(f"Bad property line: {line.strip()}")
                prop = PlyProperty(words[2], _check_type(words[1]))
            elements[-1].properties.append(prop)
        else:
            raise PlyError(f"Unknown ply header keyword: {keyword}")
    if fmt is None:
        raise PlyError("Missing ply format line")
    return PlyFile(fmt, elements, comments)


def _convert(token: bytes, type_name: str) -> float | int:
    try:
        if _SCALAR_TYPES[type_name].startswith("f"):
            return float(token)
        try:
            return int(token)
        except ValueError:
            return int(float(token))
    except ValueError:
        raise PlyError(f"Bad ascii value in ply data: {token!r}") from None


def _read_ascii(stream: BinaryIO, elements: list[PlyElement]) -> None:
    tokens = iter(stream.read().split())

    def next_token() -> bytes:
        try:
            return next(tokens)
        except StopIteration:
            raise PlyError("Unexpected end of ply data") from None

    for element in elements:
        columns: list[list[Any]] = [[] for _ in element.properties]
        for _ in range(element.count):
            for column, prop in zip(columns, element.properties):
                if prop.is_list:
                    n = int(_convert(next_token(), prop.count_type))
                    items = [_convert(next_token(), prop.type) for _ in range(n)]
                    column.append(np.array(items, dtype=prop.dtype))
                else:
                    column.append(_convert(next_token(), prop.type))
        for column, prop in zip(columns, element.properties):
            prop.data = column if prop.is_list else np.array(column, dtype=prop.dtype)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise PlyError("Unexpected end of ply data")
    return data


def _read_binary(stream: BinaryIO, elements: list[PlyElement], endian: str) -> None:
    for element in elements:
        props = element.properties
        if not any(p.is_list for p in props):
            record = np.dtype(
                [(f"p{i}", p.dtype.newbyteorder(endian)) for i, p in enumerate(props)]
            )
            raw = _read_exact(stream, record.itemsize * element.count)
            rows = np.frombuffer(raw, dtype=record, count=element.count)
            for i, prop in enumerate(props):
                prop.data = np.ascontiguousarray(rows[f"p{i}"].astype(prop.dtype))
            continue
        columns: list[list[Any]] = [[] for _ in props]
        for _ in range(element.count):
            for column, prop in zip(columns, props):
                if prop.is_list:
                    count_fmt = struct.Struct(endian + _STRUCT_CODES[prop.count_dtype.str[1:]])
                    (n,) = count_fmt.unpack(_read_exact(stream, count_fmt.size))
                    item_fmt = struct.Struct(f"{endian}{int(n)}{_STRUCT_CODES[prop.dtype.str[1:]]}")
                    items = item_fmt.unpack(_read_exact(stream, item_fmt.size))
                    column.append(np.array(items, dtype=prop.dtype))
                else:
                    value_fmt = struct.Struct(endian + _STRUCT_CODES[prop.dtype.str[1:]])
                    column.append(value_fmt.unpack(_read_exact(stream, value_fmt.size))[0])
        for column, prop in zip(columns, props):
            prop.data = column if prop.is_list else np.array(column, dtype=prop.dtype)


def read_ply(path: str | Path) -> PlyFile:
    """Read the header and all element data of a PLY file."""
    path = Path(path)
    try:
        with path.open("rb") as stream:
            ply = _parse_header(stream)
            endian = _FORMATS[ply.format]
            if endian is None:
                _read_ascii(stream, ply.elements)
            else:
                _read_binary(stream, ply.elements, endian)
    except OSError as exc:
        raise PlyError(f"Could not open ply file {path}: {exc}") from exc
    ply.path = path
    return ply


def find_vertex_element(ply: PlyFile) -> Optional[PlyElement]:
    """Return the "vertex" element, or None when there is none."""
    return ply.element("vertex")


def ply_has_mesh(ply: PlyFile) -> bool:
    """Whether the file has face, edge or polygon elements."""
    return any(e.name in _MESH_ELEMENTS for e in ply.elements)


def _ply_field_type(prop: PlyProperty) -> tuple[ScalarType, int]:
    if prop.is_list:
        raise PlyError(f"List property {prop.name} cannot be used as a point field")
    dt = prop.dtype
    return _KIND_TO_SCALAR[dt.kind], dt.itemsize


@dataclass
class _PointFieldInfo:
    displaz_name: str
    component_index: int
    semantics: Semantics
    prop: PlyProperty


def _parse_point_fields(vertex_element: PlyElement) -> list[_PointFieldInfo]:
    infos = []
    for prop in vertex_element.properties:
        if prop.is_list:
            _log.warning("Ignoring list property %s in ply file", prop.name)
            continue
        lowered = prop.name.lower()
        standard = next((s for s in _STANDARD_FIELDS if s[3] == lowered), None)
        if standard is not None:
            name, index, semantics, _ = standard
            infos.append(_PointFieldInfo(name, index, semantics, prop))
            continue
        # Guess whether this is one of several components of a vector or array.
        name, index, semantics = prop.name, 0, Semantics.ARRAY
        vec_match = _VEC3_COMPONENT.fullmatch(prop.name)
        array_match = _ARRAY_COMPONENT.fullmatch(prop.name)
        if vec_match:
            name = vec_match.group(1)
            index = ord(vec_match.group(2)) - ord("x")
            semantics = Semantics.VECTOR
        elif array_match:
            name = array_match.group(1)
            index = int(array_match.group(2))
        infos.append(_PointFieldInfo(name, index, semantics, prop))
    return infos


class _PositionOffset:
    """Removes a fixed offset, taken from the first point, from position values."""

    def __init__(self) -> None:
        self.offset = [0.0, 0.0, 0.0]

    def store(self, target: GeomField, component: int, values: np.ndarray) -> None:
        if component >= target.spec.count:
            raise PlyError(f"Position component {component} out of range")
        values = np.asarray(values, dtype=np.float64)
        if len(values):
            self.offset[component] = float(values[0])
        target.data[:, component] = values - self.offset[component]

    def as_vec(self) -> Vec3:
        return (self.offset[0], self.offset[1], self.offset[2])


def _file_label(ply: PlyFile) -> str:
    return str(ply.path) if ply.path is not None else "<ply>"


def load_ply_vertex_properties(
    ply: PlyFile, vertex_element: PlyElement
) -> tuple[list[GeomField], Vec3]:
    """Map properties of the "vertex" element onto point fields.

    Recognizes (x,y,z) -> position, (nx,ny,nz) -> normal, (red,green,blue)
    and (r,g,b) -> color; ``prop[i]`` names become arrays and names ending
    in x, y or z become vectors.  Returns the fields, position first, and
    the offset removed from positions.
    """
    npoints = vertex_element.count
    infos = _parse_point_fields(vertex_element)
    infos.sort(key=lambda f: (f.displaz_name, f.component_index, f.semantics))
    position = GeomField(TypeSpec.vec3float32(), "position", npoints)
    fields = [position]
    offset = _PositionOffset()
    has_position = False
    for (name, semantics), group in groupby(infos, key=lambda f: (f.displaz_name, f.semantics)):
        items = list(group)
        if name == "position":
            has_position = True
            for info in items:
                offset.store(position, info.component_index, info.prop.data)
            continue
        base_type, elsize = _ply_field_type(items[0].prop)
        count = max(info.component_index for info in items) + 1
        target = GeomField(TypeSpec(base_type, elsize, count, semantics), name, npoints)
        fields.append(target)
        for info in items:
            target.data[:, info.component_index] = info.prop.data
    if not has_position:
        raise PlyError(f"No position property found in file {_file_label(ply)}")
    return fields, offset.as_vec()


def load_displaz_native_ply(ply: PlyFile) -> tuple[list[GeomField], Vec3, int]:
    """Load the native layout where each field is an element named "vertex_<name>".

    The first property name sets the semantics: "x" a vector, "r" a color
    and "0" an array.  Returns the fields, the offset removed from the
    position field and the number of points.
    """
    vertex_elements = []
    npoints: Optional[int] = None
    for element in ply.elements:
        if element.name.startswith("vertex_"):
            if npoints is None:
                npoints = element.count
            if npoints != element.count:
                raise PlyError('Inconsistent number of points in "vertex_*" fields')
            vertex_elements.append(element)
        else:
            _log.warning("Ignoring unrecogized ply element: %s", element.name)
    if npoints is None:
        raise PlyError(f'No "vertex_*" elements found in file {_file_label(ply)}')

    fields = []
    offset = _PositionOffset()
    for element in vertex_elements:
        if not element.properties:
            raise PlyError(f"Element {element.name} has no properties")
        first = element.properties[0]
        base_type, elsize = _ply_field_type(first)
        if first.name == "x":
            semantics = Semantics.VECTOR
        elif first.name == "r":
            semantics = Semantics.COLOR
        elif first.name == "0":
            semantics = Semantics.ARRAY
        else:
            raise PlyError(
                f"Could not determine vector semantics for property "
                f"{element.name}.{first.name}: expected property name x, r or 0"
            )
        num_props = len(element.properties)
        field_name = element.name[len("vertex_"):]
        if field_name == "position":
            if num_props != 3:
                raise PlyError(
                    f"position field must have three elements, found {num_props}"
                )
            spec = TypeSpec.vec3float32()
        else:
            spec = TypeSpec(base_type, elsize, num_props, semantics)
        target = GeomField(spec, field_name, npoints)
        for index, prop in enumerate(element.properties):
            if prop.is_list:
                raise PlyError(f"List property {element.name}.{prop.name} not supported")
            if field_name == "position":
                offset.store(target, index, prop.data)
            else:
                target.data[:, index] = prop.data
        fields.append(target)
        _log.info("%s: %s %s", _file_label(ply), spec, field_name)
    return fields, offset.as_vec(), npoints