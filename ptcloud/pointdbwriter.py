"""Writer for a simple tiled on-disk point database."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import numpy as np

from ptcloud.hcloud import Box3, Vec3
from ptcloud.logger import Logger
from ptcloud.pointdb import PointDbError

TilePos = tuple[int, int, int]

_POINT_DTYPE = np.dtype([("position", "<f4", (3,)), ("intensity", "<f4")])


@dataclass
class _Tile:
    tile_pos: TilePos
    records: list[tuple[Vec3, float]] = field(default_factory=list)
    recently_used: bool = False

    @property
    def empty(self) -> bool:
        return not self.records

    def size_bytes(self) -> int:
        return len(self.records) * _POINT_DTYPE.itemsize


class PointDbWriter:
    """Sort an unordered stream of points into fixed size tile files.

    Points are buffered per tile and appended to the tile files every
    ``flush_interval`` points for tiles not recently used, so the full set of
    points never needs to fit in memory.  ``close`` flushes everything and
    writes ``config.txt`` describing the database.
    """

    def __init__(
        self,
        dir_name: str | Path,
        bounding_box: Box3 | None,
        tile_size: float,
        flush_interval: int,
        logger: Logger,
    ) -> None:
        self.dir_name = Path(dir_name)
        box = bounding_box if bounding_box is not None else Box3()
        self.bounding_box = Box3(box.min, box.max)
        self.tile_size = tile_size
        self.offset: Vec3 = (0.0, 0.0, 0.0)
        self.points_written = 0
        self._compute_bounds = self.bounding_box.is_empty()
        self._flush_interval = flush_interval
        self._have_offset = False
        self._prev_tile: _Tile | None = None
        self._cache: dict[TilePos, _Tile] = {}
        self._logger = logger
        if self.dir_name.is_dir():
            raise PointDbError(f"Point output directory already exists: {dir_name}")
        try:
            self.dir_name.mkdir(parents=True)
        except OSError as exc:
            raise PointDbError(f"Could not create directory: {dir_name}") from exc

    def __enter__(self) -> "PointDbWriter":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def cache_size_bytes(self) -> int:
        """Bytes of point data currently buffered in memory."""
        return sum(tile.size_bytes() for tile in self._cache.values())

    def write_point(self, position: Sequence[float], intensity: float) -> None:
        """Add one point with the given position and intensity."""
        p = tuple(float(v) for v in position)
        if not self._have_offset:
            self.offset = p
            self._have_offset = True
        tile_pos = tuple(int(math.floor(v / self.tile_size)) for v in p)
        tile = self._find_tile(tile_pos)
        if self._compute_bounds:
            self.bounding_box.extend_by(p)
        rel = (p[0] - self.offset[0], p[1] - self.offset[1], p[2] - self.offset[2])
        tile.records.append((rel, float(intensity)))
        self.points_written += 1
        if self.points_written % self._flush_interval == 0:
            self._flush_tiles()

    def close(self) -> None:
        """Flush all tiles and write the database config file."""
        self._flush_tiles(force_flush_all=True)
        box = self.bounding_box
        lines = [
            "%.17e" % self.tile_size,
            " ".join("%.17e" % v for v in (*box.min, *box.max)),
            " ".join("%.17e" % v for v in self.offset),
        ]
        lines.extend("%d %d %d" % pos for pos in sorted(self._cache))
        (self.dir_name / "config.txt").write_text("\n".join(lines) + "\n")

    def _find_tile(self, pos: TilePos) -> _Tile:
        prev = self._prev_tile
        if prev is not None and prev.tile_pos == pos:
            prev.recently_used = True
            return prev
        tile = self._cache.setdefault(pos, _Tile(pos))
        tile.recently_used = True
        self._prev_tile = tile
        return tile

    def _flush_tiles(self, force_flush_all: bool = False) -> None:
        for tile in self._cache.values():
            if (force_flush_all or not tile.recently_used) and not tile.empty:
                self._flush_to_disk(tile)
            tile.recently_used = False

    def _flush_to_disk(self, tile: _Tile) -> None:
        x, y, z = tile.tile_pos
        path = self.dir_name / f"{x}_{y}_{z}.dat"
        if path.exists() and path.stat().st_size > 0:
            self._logger.debug(
                "Reopening file %s to flush %d points", path, len(tile.records)
            )
        data = np.array(tile.records, dtype=_POINT_DTYPE)
        with path.open("ab") as f:
            f.write(data.tobytes())
        tile.records = []