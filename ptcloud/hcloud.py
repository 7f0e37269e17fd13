"""Hierarchical point cloud (hcloud) header and tree index reading and writing."""

from __future__ import annotations

import struct
import sys
from dataclasses import dataclass, field
from enum import IntEnum
from typing import BinaryIO, Optional, Sequence

HCLOUD_MAGIC = b"HierarchicalPointCloud\n\x0c"
HCLOUD_MAGIC_SIZE = 24
HCLOUD_VERSION = 1

Vec3 = tuple[float, float, float]

_HEADER_BODY = struct.Struct("<IQQQQ15dH")
_VERSION = struct.Struct("<H")
_NODE = struct.Struct("<BQIB")


class HCloudError(Exception):
    """Raised when an hcloud stream is malformed."""


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    data = stream.read(size)
    if len(data) != size:
        raise HCloudError("Unexpected end of hcloud stream")
    return data


def _format_vec(v: Sequence[float]) -> str:
    return "({:.3f} {:.3f} {:.3f})".format(*v)


@dataclass
class Box3:
    """Axis aligned 3D box; empty by default."""

    min: Vec3 = (sys.float_info.max,) * 3
    max: Vec3 = (-sys.float_info.max,) * 3

    def is_empty(self) -> bool:
        return any(hi < lo for lo, hi in zip(self.min, self.max))

    def extend_by(self, point: Sequence[float]) -> None:
        self.min = tuple(min(a, b) for a, b in zip(self.min, point))
        self.max = tuple(max(a, b) for a, b in zip(self.max, point))

    def intersects(self, point: Sequence[float]) -> bool:
        return all(lo <= p <= hi for lo, p, hi in zip(self.min, point, self.max))

    def center(self) -> Vec3:
        return tuple((lo + hi) / 2 for lo, hi in zip(self.min, self.max))


class IndexFlags(IntEnum):
    """Kind of data stored in a tree node."""

    POINTS = 0
    VOXELS = 1


@dataclass
class NodeIndexData:
    """Index entry for one node of the tree."""

    flags: IndexFlags = IndexFlags.POINTS
    data_offset: int = 0
    num_points: int = 0


@dataclass
class HCloudHeader:
    """Header metadata stored at the start of an hcloud file."""

    version: int = HCLOUD_VERSION
    header_size: int = 0
    num_points: int = 0
    num_voxels: int = 0
    index_offset: int = 0
    data_offset: int = 0
    offset: Vec3 = (0.0, 0.0, 0.0)
    bounding_box: Box3 = field(default_factory=Box3)
    tree_bounding_box: Box3 = field(default_factory=Box3)
    brick_size: int = 0

    def _pack(self, header_size: int) -> bytes:
        body = _HEADER_BODY.pack(
            header_size,
            self.num_points,
            self.num_voxels,
            self.index_offset,
            self.data_offset,
            *self.offset,
            *self.bounding_box.min,
            *self.bounding_box.max,
            *self.tree_bounding_box.min,
            *self.tree_bounding_box.max,
            self.brick_size,
        )
        return HCLOUD_MAGIC + _VERSION.pack(self.version) + body

    def write(self, out: BinaryIO) -> None:
        """Write the header to a binary stream, updating ``header_size``."""
        self.header_size = len(self._pack(0))
        out.write(self._pack(self.header_size))

    def __str__(self) -> str:
        return (
            f"version = {self.version}\n"
            f"headerSize = {self.header_size}\n"
            f"numPoints = {self.num_points}\n"
            f"numVoxels = {self.num_voxels}\n"
            f"indexOffset = {self.index_offset}\n"
            f"dataOffset = {self.data_offset}\n"
            f"offset = {_format_vec(self.offset)}\n"
            f"boundingBox = [{_format_vec(self.bounding_box.min)} -- "
            f"{_format_vec(self.bounding_box.max)}]\n"
            f"treeBoundingBox = [{_format_vec(self.tree_bounding_box.min)} -- "
            f"{_format_vec(self.tree_bounding_box.max)}]\n"
            f"brickSize = {self.brick_size}"
        )


def read_header(stream: BinaryIO) -> HCloudHeader:
    """Read an hcloud header from a binary stream."""
    magic = stream.read(HCLOUD_MAGIC_SIZE)
    if len(magic) != HCLOUD_MAGIC_SIZE or magic != HCLOUD_MAGIC:
        raise HCloudError("Bad magic number: not a hierarchical point cloud")
    (version,) = _VERSION.unpack(_read_exact(stream, _VERSION.size))
    if version != HCLOUD_VERSION:
        raise HCloudError(f"Unknown hcloud version: {version}")
    values = _HEADER_BODY.unpack(_read_exact(stream, _HEADER_BODY.size))
    header_size, num_points, num_voxels, index_offset, data_offset = values[:5]
    doubles = values[5:20]
    return HCloudHeader(
        version=version,
        header_size=header_size,
        num_points=num_points,
        num_voxels=num_voxels,
        index_offset=index_offset,
        data_offset=data_offset,
        offset=tuple(doubles[0:3]),
        bounding_box=Box3(tuple(doubles[3:6]), tuple(doubles[6:9])),
        tree_bounding_box=Box3(tuple(doubles[9:12]), tuple(doubles[12:15])),
        brick_size=values[20],
    )


@dataclass
class HCloudNode:
    """Node of the hcloud octree; children are ordered x + 2*y + 4*z."""

    bbox: Box3
    idata: NodeIndexData = field(default_factory=NodeIndexData)
    is_leaf: bool = False
    children: list[Optional["HCloudNode"]] = field(default_factory=lambda: [None] * 8)
    position: Optional[list[float]] = None
    intensity: Optional[list[float]] = None
    coverage: Optional[list[float]] = None

    @property
    def is_cached(self) -> bool:
        return self.position is not None

    def radius(self) -> float:
        return self.bbox.max[0] - self.bbox.min[0]


def _child_box(bbox: Box3, center: Vec3, index: int) -> Box3:
    lo = list(bbox.min)
    hi = list(bbox.max)
    for axis in range(3):
        if (index >> axis) & 1:
            lo[axis] = center[axis]
        else:
            hi[axis] = center[axis]
    return Box3(tuple(lo), tuple(hi))


def read_hcloud_index(stream: BinaryIO, bbox: Box3) -> HCloudNode:
    """Read the tree index rooted at the current stream position."""
    flags, data_offset, num_points, child_mask = _NODE.unpack(
        _read_exact(stream, _NODE.size)
    )
    try:
        node_flags = IndexFlags(flags)
    except ValueError:
        raise HCloudError(f"Unknown node index flags: {flags}") from None
    node = HCloudNode(
        bbox=Box3(bbox.min, bbox.max),
        idata=NodeIndexData(node_flags, data_offset, num_points),
        is_leaf=child_mask == 0,
    )
    center = bbox.center()
    for i in range(8):
        if not (child_mask >> i) & 1:
            continue
        child = read_hcloud_index(stream, _child_box(bbox, center, i))
        # Leaf point nodes share the parent's bounding box.
        if child.idata.flags == IndexFlags.POINTS:
            child.bbox = Box3(bbox.min, bbox.max)
        node.children[i] = child
    return node