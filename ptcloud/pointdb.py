"""Reader for a simple tiled on-disk point database."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from ptcloud.hcloud import Box3, Vec3
from ptcloud.logger import Logger

TilePos = tuple[int, int, int]

_POINT_DTYPE = np.dtype([("position", "<f4", (3,)), ("intensity", "<f4")])


class PointDbError(Exception):
    """Raised when the point database cannot be read."""


@dataclass
class _Tile:
    tile_pos: TilePos
    file_name: Path
    position: np.ndarray = field(default_factory=lambda: np.empty((0, 3), np.float32))
    intensity: np.ndarray = field(default_factory=lambda: np.empty(0, np.float32))
    recently_used: bool = False

    @property
    def empty(self) -> bool:
        return len(self.position) == 0

    def size_bytes(self) -> int:
        return self.position.nbytes + self.intensity.nbytes

    def clear(self) -> None:
        self.position = np.empty((0, 3), np.float32)
        self.intensity = np.empty(0, np.float32)


class SimplePointDb:
    """Query points inside a bounding box from a grid of tile files.

    Tiles are loaded lazily and cached; the cache is trimmed of tiles not
    recently used once it grows past ``cache_max_size`` bytes.
    """

    def __init__(self, dir_name: str | Path, cache_max_size: int, logger: Logger) -> None:
        self.dir_name = Path(dir_name)
        self.bounding_box = Box3()
        self.tile_size = 0.0
        self.offset: Vec3 = (0.0, 0.0, 0.0)
        self._max_cache_size = cache_max_size
        self._cache_byte_size = 0
        self._bytes_since_trim = 0
        self._logger = logger
        self._cache: dict[TilePos, _Tile] = {}
        logger.debug(
            "Using SimplePointDb cache size: %.2f MB", cache_max_size / (1024.0 * 1024.0)
        )
        self._read_config()

    def query(self, bbox: Box3) -> tuple[np.ndarray, np.ndarray]:
        """Return ``(position, intensity)`` of all points inside ``bbox``.

        Positions are an ``(n, 3)`` float32 array relative to ``offset``.
        """
        ts = self.tile_size
        start = [int(math.floor(v / ts)) for v in bbox.min]
        end = [int(math.ceil(v / ts)) for v in bbox.max]
        offset = np.asarray(self.offset, dtype=np.float64)
        lo = (np.asarray(bbox.min, dtype=np.float64) - offset).astype(np.float32)
        hi = (np.asarray(bbox.max, dtype=np.float64) - offset).astype(np.float32)
        positions = []
        intensities = []
        for z in range(start[2], end[2]):
            for y in range(start[1], end[1]):
                for x in range(start[0], end[0]):
                    tile = self._find_tile((x, y, z))
                    if tile is None:
                        continue
                    p = tile.position
                    mask = np.all((p >= lo) & (p < hi), axis=1)
                    positions.append(p[mask])
                    intensities.append(tile.intensity[mask])
        if not positions:
            return np.empty((0, 3), np.float32), np.empty(0, np.float32)
        return np.concatenate(positions), np.concatenate(intensities)

    def _find_tile(self, pos: TilePos) -> _Tile | None:
        tile = self._cache.get(pos)
        if tile is None:
            return None
        tile.recently_used = True
        if tile.empty:
            self._read_tile_from_disk(tile)
            size = tile.size_bytes()
            self._bytes_since_trim += size
            self._cache_byte_size += size
            if self._cache_byte_size > self._max_cache_size:
                self._trim_cache(True)
            elif self._bytes_since_trim > self._max_cache_size / 2:
                self._bytes_since_trim = 0
                self._trim_cache(False)
        return tile

    def _trim_cache(self, do_clear: bool) -> None:
        for tile in self._cache.values():
            if tile.recently_used:
                tile.recently_used = False
            elif do_clear:
                tile.clear()

    def _read_config(self) -> None:
        config_file = self.dir_name / "config.txt"
        try:
            tokens = config_file.read_text().split()
            head = [float(t) for t in tokens[:10]]
        except (OSError, ValueError):
            head = []
        if len(head) != 10:
            raise PointDbError(f"Could not read DB config file: {config_file}")
        self.tile_size = head[0]
        self.bounding_box = Box3(tuple(head[1:4]), tuple(head[4:7]))
        self.offset = tuple(head[7:10])
        rest = tokens[10:]
        for i in range(0, len(rest) - 2, 3):
            try:
                pos = (int(rest[i]), int(rest[i + 1]), int(rest[i + 2]))
            except ValueError:
                break
            file_name = self.dir_name / f"{pos[0]}_{pos[1]}_{pos[2]}.dat"
            self._cache[pos] = _Tile(pos, file_name)
        self._logger.info(
            "Loaded config file: %s; %d tiles", config_file, len(self._cache)
        )

    def _read_tile_from_disk(self, tile: _Tile) -> None:
        try:
            raw = tile.file_name.read_bytes()
        except OSError as exc:
            raise PointDbError(
                f"Error reading points for tile at {tile.tile_pos}"
            ) from exc
        num_points = len(raw) // _POINT_DTYPE.itemsize
        records = np.frombuffer(raw, dtype=_POINT_DTYPE, count=num_points)
        tile.position = records["position"].astype(np.float32)
        tile.intensity = records["intensity"].astype(np.float32)
        self._logger.debug("Cache tile: %s", tile.tile_pos)