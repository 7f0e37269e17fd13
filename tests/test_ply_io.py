import struct

import numpy as np
import pytest

from ptcloud.geomfield import ScalarType, Semantics, TypeSpec
from ptcloud.ply_io import (
    PlyError,
    find_vertex_element,
    load_displaz_native_ply,
    load_ply_vertex_properties,
    ply_has_mesh,
    read_ply,
)


def write_ply(path, header_lines, body):
    header = "\n".join(["ply", *header_lines, "end_header"]) + "\n"
    if isinstance(body, str):
        body = body.encode("ascii")
    path.write_bytes(header.encode("ascii") + body)
    return path


def test_read_ascii_elements(tmp_path):
    path = write_ply(
        tmp_path / "a.ply",
        ["format ascii 1.0", "comment hello", "element vertex 2",
         "property float x", "property uchar red"],
        "1.5 7\n2.5 9\n",
    )
    ply = read_ply(path)
    assert ply.comments == ["hello"]
    vertex = find_vertex_element(ply)
    assert vertex.count == 2
    assert vertex.property("x").data.tolist() == [1.5, 2.5]
    assert vertex.property("red").data.dtype == np.uint8
    assert vertex.property("red").data.tolist() == [7, 9]


def test_binary_endianness_agree(tmp_path):
    rows = [(1.25, -3, 40000), (2.5, 7, 12)]
    header = ["element vertex 2", "property double x", "property short s", "property uint u"]
    le = b"".join(struct.pack("<dhI", *r) for r in rows)
    be = b"".join(struct.pack(">dhI", *r) for r in rows)
    a = read_ply(write_ply(tmp_path / "le.ply", ["format binary_little_endian 1.0", *header], le))
    b = read_ply(write_ply(tmp_path / "be.ply", ["format binary_big_endian 1.0", *header], be))
    for name in ("x", "s", "u"):
        va = a.element("vertex").property(name).data
        vb = b.element("vertex").property(name).data
        assert va.tolist() == vb.tolist()
    assert a.element("vertex").property("u").data.tolist() == [40000, 12]


def test_binary_list_property(tmp_path):
    body = struct.pack("<fff", 0, 0, 0) * 3 + struct.pack("<B3i", 3, 0, 1, 2)
    path = write_ply(
        tmp_path / "mesh.ply",
        ["format binary_little_endian 1.0", "element vertex 3", "property float x",
         "property float y", "property float z", "element face 1",
         "property list uchar int vertex_indices"],
        body,
    )
    ply = read_ply(path)
    faces = ply.element("face").property("vertex_indices").data
    assert [f.tolist() for f in faces] == [[0, 1, 2]]
    assert ply_has_mesh(ply)


def test_ply_has_mesh_false_for_points(tmp_path):
    path = write_ply(tmp_path / "p.ply", ["format ascii 1.0", "element vertex 1",
                                          "property float x"], "1\n")
    assert not ply_has_mesh(read_ply(path))


def test_bad_magic(tmp_path):
    path = tmp_path / "bad.ply"
    path.write_bytes(b"notply\nformat ascii 1.0\nend_header\n")
    with pytest.raises(PlyError):
        read_ply(path)


def test_unknown_format(tmp_path):
    path = write_ply(tmp_path / "f.ply", ["format binary_middle_endian 1.0"], b"")
    with pytest.raises(PlyError):
        read_ply(path)


def test_unknown_property_type(tmp_path):
    path = write_ply(tmp_path / "t.ply", ["format ascii 1.0", "element vertex 1",
                                          "property quad x"], "1\n")
    with pytest.raises(PlyError):
        read_ply(path)


def test_truncated_binary(tmp_path):
    path = write_ply(tmp_path / "t.ply", ["format binary_little_endian 1.0",
                                          "element vertex 2", "property float x"],
                     struct.pack("<f", 1.0))
    with pytest.raises(PlyError):
        read_ply(path)


def test_vertex_properties_standard_fields(tmp_path):
    points = [(10.0, 20.0, 30.0), (11.0, 22.0, 33.0), (12.5, 20.25, 29.0)]
    body = "".join(f"{x} {y} {z} {i} 5 6 7 0 0 1\n" for i, (x, y, z) in enumerate(points))
    path = write_ply(
        tmp_path / "v.ply",
        ["format ascii 1.0", "element vertex 3", "property double x", "property double y",
         "property double z", "property ushort intensity", "property uchar red",
         "property uchar green", "property uchar blue", "property float nx",
         "property float ny", "property float nz"],
        body,
    )
    ply = read_ply(path)
    fields, offset = load_ply_vertex_properties(ply, find_vertex_element(ply))
    assert [f.name for f in fields] == ["position", "color", "intensity", "normal"]
    assert offset == points[0]
    assert fields[0].spec == TypeSpec.vec3float32()
    restored = fields[0].data.astype(np.float64) + np.array(offset)
    assert np.allclose(restored, points)
    color = fields[1]
    assert color.spec == TypeSpec(ScalarType.UINT, 1, 3, Semantics.COLOR)
    assert color.data[0].tolist() == [5, 6, 7]
    assert fields[2].spec == TypeSpec(ScalarType.UINT, 2, 1, Semantics.ARRAY)
    assert fields[2].data[:, 0].tolist() == [0, 1, 2]
    assert fields[3].spec.semantics == Semantics.VECTOR


def test_vertex_properties_vector_and_array_guessing(tmp_path):
    path = write_ply(
        tmp_path / "g.ply",
        ["format ascii 1.0", "element vertex 2", "property float X", "property float Y",
         "property float Z", "property float velz", "property float velx",
         "property float vely", "property int a[1]", "property int a[0]"],
        "0 0 0 3 1 2 8 9\n0 0 0 6 4 5 10 11\n",
    )
    ply = read_ply(path)
    fields, _ = load_ply_vertex_properties(ply, find_vertex_element(ply))
    by_name = {f.name: f for f in fields}
    vel = by_name["vel"]
    assert vel.spec.semantics == Semantics.VECTOR
    assert vel.data.tolist() == [[1, 2, 3], [4, 5, 6]]
    arr = by_name["a"]
    assert arr.spec == TypeSpec(ScalarType.INT, 4, 2, Semantics.ARRAY)
    assert arr.data.tolist() == [[9, 8], [11, 10]]


def test_vertex_list_property_ignored(tmp_path):
    path = write_ply(
        tmp_path / "l.ply",
        ["format ascii 1.0", "element vertex 1", "property float x", "property float y",
         "property float z", "property list uchar int stuff"],
        "1 2 3 2 4 5\n",
    )
    ply = read_ply(path)
    fields, _ = load_ply_vertex_properties(ply, find_vertex_element(ply))
    assert [f.name for f in fields] == ["position"]


def test_vertex_without_position_raises(tmp_path):
    path = write_ply(tmp_path / "n.ply", ["format ascii 1.0", "element vertex 1",
                                          "property float intensity"], "1\n")
    ply = read_ply(path)
    with pytest.raises(PlyError):
        load_ply_vertex_properties(ply, find_vertex_element(ply))


NATIVE_HEADER = [
    "format ascii 1.0",
    "element vertex_position 2", "property double x", "property double y", "property double z",
    "element vertex_mycolor 2", "property uint8 r", "property uint8 g", "property uint8 b",
    "element vertex_myarray 2", "property float 0", "property float 1",
]


def test_native_ply_documented_example(tmp_path):
    body = "100 200 300\n101 202 303\n1 2 3\n4 5 6\n0.5 1.5\n2.5 3.5\n"
    ply = read_ply(write_ply(tmp_path / "n.ply", NATIVE_HEADER, body))
    assert find_vertex_element(ply) is None
    fields, offset, npoints = load_displaz_native_ply(ply)
    assert npoints == 2
    assert [str(f) for f in fields] == [
        "vector float[3] position",
        "color uint8_t[3] mycolor",
        "array float[2] myarray",
    ]
    assert offset == (100.0, 200.0, 300.0)
    restored = fields[0].data.astype(np.float64) + np.array(offset)
    assert np.allclose(restored, [[100, 200, 300], [101, 202, 303]])
    assert fields[1].data.tolist() == [[1, 2, 3], [4, 5, 6]]
    assert fields[2].data.tolist() == [[0.5, 1.5], [2.5, 3.5]]


def test_native_position_needs_three_props(tmp_path):
    path = write_ply(tmp_path / "p.ply", ["format ascii 1.0", "element vertex_position 1",
                                          "property float x", "property float y"], "1 2\n")
    with pytest.raises(PlyError):
        load_displaz_native_ply(read_ply(path))


def test_native_bad_semantics(tmp_path):
    path = write_ply(tmp_path / "s.ply", ["format ascii 1.0", "element vertex_foo 1",
                                          "property float q"], "1\n")
    with pytest.raises(PlyError):
        load_displaz_native_ply(read_ply(path))


def test_native_inconsistent_counts(tmp_path):
    path = write_ply(
        tmp_path / "c.ply",
        ["format ascii 1.0", "element vertex_position 1", "property float x",
         "property float y", "property float z", "element vertex_foo 2", "property float 0"],
        "1 2 3\n4\n5\n",
    )
    with pytest.raises(PlyError):
        load_displaz_native_ply(read_ply(path))


def test_native_ignores_other_elements(tmp_path):
    path = write_ply(
        tmp_path / "o.ply",
        ["format ascii 1.0", "element vertex_position 1", "property float x",
         "property float y", "property float z", "element extra 1", "property float w"],
        "1 2 3\n9\n",
    )
    fields, offset, npoints = load_displaz_native_ply(read_ply(path))
    assert [f.name for f in fields] == ["position"]
    assert npoints == 1
    assert fields[0].data.tolist() == [[0.0, 0.0, 0.0]]
    assert offset == (1.0, 2.0, 3.0)


def test_native_without_vertex_elements(tmp_path):
    path = write_ply(tmp_path / "e.ply", ["format ascii 1.0", "element extra 1",
                                          "property float w"], "1\n")
    with pytest.raises(PlyError):
        load_displaz_native_ply(read_ply(path))