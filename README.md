# ptcloud

Building blocks for working with large point clouds: binary headers and
tree indexes, a tiled on-disk point database, a PLY reader that maps vertex
data onto typed per-point fields, and small logging and timing helpers.

## Modules

- `ptcloud.hcloud`: the hierarchical point cloud format.
  `HCloudHeader.write(out)` writes a header to a binary stream and fills in
  `header_size`; `read_header(stream)` reads one back and raises
  `HCloudError` for a bad magic number or an unknown version.
  `read_hcloud_index(stream, bbox)` reads the octree index into a tree of
  `HCloudNode` objects, giving each child its octant of the parent box.
  `Box3` is the axis-aligned box used throughout the package.
- `ptcloud.pointdb`: `SimplePointDb(dir_name, cache_max_size, logger)` opens a
  tiled point database and `query(bbox)` returns `(position, intensity)` numpy
  arrays of the points inside the box, with positions relative to `offset`.
  Tiles are read from disk only when a query needs them, and tiles not
  recently used are dropped once the cache grows past `cache_max_size` bytes.
  Problems reading the database raise `PointDbError`.
- `ptcloud.pointdbwriter`: `PointDbWriter` builds such a database from a
  stream of points, one `write_point(position, intensity)` call per point.
  Points are buffered per tile and appended to the tile files every
  `flush_interval` points; `close()` flushes everything and writes
  `config.txt`. It can also be used as a context manager. The output
  directory must not exist yet.
- `ptcloud.ply_io`: `read_ply(path)` reads ASCII and binary PLY files into a
  `PlyFile` of `PlyElement` and `PlyProperty` objects.
  `load_ply_vertex_properties(ply, vertex_element)` maps the properties of a
  `vertex` element onto fields: `x y z` to `position`, `nx ny nz` to
  `normal`, `red green blue` or `r g b` to `color`, `name[i]` to arrays and
  names ending in `x`, `y` or `z` to vectors.
  `load_displaz_native_ply(ply)` reads the layout where every field is its own
  `vertex_<name>` element. Both subtract the first point's position as an
  offset and return it. `find_vertex_element` and `ply_has_mesh` inspect a
  file's elements. Errors raise `PlyError`; warnings go to the standard
  `logging` module.
- `ptcloud.geomfield`: `GeomField` holds a named `(size, count)` numpy array
  typed by a `TypeSpec` (`ScalarType`, element size, count, `Semantics`).
  `format_value(index)` renders one point's value, `reorder(field, inds)`
  permutes a field's points and `total_bytes(fields)` gives bytes per point.
- `ptcloud.logger`: `Logger` formats printf-style messages, filters them by
  `LogLevel` and limits repeated warnings (`warning_limited`).
  `parse_log_level` turns `"error"`, `"warning"`, `"info"` or `"debug"` into a
  level. `StreamLogger` writes to a text stream (stderr by default) and draws
  a progress bar for `start_progress` and `progress(fraction)`.
- `ptcloud.framerate`: `FrameRate.tick()` counts frames and, at most every
  `step_ms` milliseconds, updates `frame_rate` and `frame_time` and prints
  `detailed()`.

## Installing

    pip install .

To run the tests:

    pip install .[test]
    pytest

## Examples

Write a small point database and query it:

    from ptcloud.hcloud import Box3
    from ptcloud.logger import StreamLogger
    from ptcloud.pointdbwriter import PointDbWriter
    from ptcloud.pointdb import SimplePointDb

    logger = StreamLogger()
    writer = PointDbWriter("db", Box3(), 10.0, 1000, logger)
    writer.write_point((1.0, 2.0, 3.0), 0.5)
    writer.write_point((15.0, 2.0, 3.0), 0.7)
    writer.close()

    db = SimplePointDb("db", 64 * 1024 * 1024, logger)
    positions, intensities = db.query(Box3((0, 0, 0), (20, 20, 20)))

Read the vertex data of a PLY file:

    from ptcloud.ply_io import read_ply, find_vertex_element, load_ply_vertex_properties

    ply = read_ply("cloud.ply")
    vertex = find_vertex_element(ply)
    fields, offset = load_ply_vertex_properties(ply, vertex)
    for field in fields:
        print(field)

Round-trip an hcloud header:

    import io
    from ptcloud.hcloud import HCloudHeader, read_header

    buf = io.BytesIO()
    HCloudHeader(num_points=42).write(buf)
    buf.seek(0)
    print(read_header(buf))

## What it does not do

The package has no command-line tool and does no drawing. It does not load
whole point files into an in-memory cloud, sort points into an octree for
level-of-detail display, pick points, or apply per-point edits read from a
file. It does not read LAS or LAZ files, and it reads the hcloud header and
tree index only, not the node point data.