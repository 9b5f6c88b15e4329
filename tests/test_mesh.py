import math
import random

import numpy as np
import pytest

from poseexpr.mesh import Face, PlyFormatError, StaticCamera

COLORED_PLY = """ply
format ascii 1.0
comment made by hand
element vertex 3
property float x
property float y
property float z
property uchar red
property uchar green
property uchar blue
element face 1
property list uchar int vertex_indices
end_header
0 0 0 255 0 0
1 0 0 0 255 0
0 1 0 0 0 255
3 0 1 2
"""

PLAIN_PLY = """ply
format ascii 1.0
element vertex 3
property float x
property float y
property float z
element face 1
property list uchar int vertex_indices
end_header
0 0 0
1.5 0 0
0 2 -1
3 0 1 2
"""


def _write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return path


def test_load_ply_reads_positions_colours_and_faces(tmp_path):
    face = Face()
    face.load_ply(_write(tmp_path, "m.ply", COLORED_PLY))
    np.testing.assert_allclose(face.mesh.vertices, [[0, 0, 0], [1, 0, 0], [0, 1, 0]])
    np.testing.assert_array_equal(face.mesh.faces, [[0, 1, 2]])
    np.testing.assert_allclose(face.mesh.colors[0], [1.0, 0.0, 0.0, 1.0])
    np.testing.assert_allclose(face.mesh.colors[2], [0.0, 0.0, 1.0, 1.0])


def test_load_ply_without_vertices_raises(tmp_path):
    text = COLORED_PLY.replace("element vertex 3", "element vertex 0")
    with pytest.raises(PlyFormatError):
        Face().load_ply(_write(tmp_path, "m.ply", text))


def test_save_and_load_round_trip(tmp_path):
    shape = np.array([[0.0, 0.0, 0.0], [1.5, -2.0, 0.25], [0.0, 1.0, 3.0]])
    tex = np.array([[255.0, 0.0, 0.0], [0.0, 255.0, 0.0], [0.0, 0.0, 255.0]])
    faces = np.array([[0, 1, 2]])
    original = Face()
    original.load_mesh(shape, tex, faces)
    path = tmp_path / "out.ply"
    original.save_ply(path)

    loaded = Face()
    loaded.load_ply(path)
    np.testing.assert_allclose(loaded.mesh.vertices, shape)
    np.testing.assert_array_equal(loaded.mesh.faces, faces)
    np.testing.assert_allclose(loaded.mesh.colors, original.mesh.colors)


def test_save_ply_writes_blue_green_red(tmp_path):
    face = Face()
    face.load_mesh([[0.0, 0.0, 0.0]], [[255.0, 0.0, 0.0]], np.zeros((0, 3)))
    path = tmp_path / "out.ply"
    face.save_ply(path)
    lines = path.read_text().splitlines()
    assert "property uchar blue" in lines
    assert lines[-1] == "0 0 0 0 0 255"


def test_save_ply_samples_texture_when_no_colours(tmp_path):
    face = Face()
    face.mesh.vertices = np.array([[1.0, 2.0, 3.0]])
    face.mesh.texcoords = np.array([[0.5, 0.0]])
    face.mesh.texture = np.array([[[1, 2, 3], [4, 5, 6]]], dtype=np.uint8)
    path = tmp_path / "out.ply"
    face.save_ply(path)
    assert path.read_text().splitlines()[-1] == "1 2 3 4 5 6"


def test_load_ply_model_applies_scale(tmp_path):
    path = _write(tmp_path, "m.ply", PLAIN_PLY)
    plain = Face()
    plain.load_ply_model(path)
    scaled = Face()
    scaled.model_scale = 2.0
    scaled.load_ply_model(path)
    np.testing.assert_allclose(plain.mesh.vertices, [[0, 0, 0], [1.5, 0, 0], [0, 2, -1]])
    np.testing.assert_allclose(scaled.mesh.vertices, 2.0 * plain.mesh.vertices)
    np.testing.assert_array_equal(plain.mesh.faces, [[0, 1, 2]])


def test_load_ply_model_rejects_non_triangles(tmp_path):
    path = _write(tmp_path, "m.ply", PLAIN_PLY.replace("3 0 1 2", "4 0 1 2 0"))
    with pytest.raises(PlyFormatError):
        Face().load_ply_model(path)


def test_load_ply_model_rejects_non_ply(tmp_path):
    path = _write(tmp_path, "m.ply", "solid nothing\n")
    with pytest.raises(PlyFormatError):
        Face().load_ply_model(path)


def test_load_ply_landmarks_picks_nearest_vertices(tmp_path):
    face = Face()
    face.load_mesh([[0, 0, 0], [10, 0, 0], [0, 10, 0]], np.zeros((3, 3)), [[0, 1, 2]])
    text = """ply
format ascii 1.0
comment Landmark_seq: 4 9
element vertex 2
property float x
property float y
property float z
end_header
9.5 0.2 0
0.1 0.3 0
"""
    face.load_ply_landmarks(_write(tmp_path, "lm.ply", text))
    assert face.landmarks == {4: 1, 9: 0}


def test_estimate_normals_of_flat_triangle():
    face = Face()
    face.load_mesh([[0, 0, 0], [1, 0, 0], [0, 1, 0]], np.zeros((3, 3)), [[0, 1, 2]])
    normals = face.estimate_normals()
    np.testing.assert_allclose(normals, np.tile([0.0, 0.0, 1.0], (3, 1)), atol=1e-12)
    np.testing.assert_allclose(face.triangle_normal_from_vertex(0, 0), [0, 0, math.pi / 2], atol=1e-12)


def test_copy_is_independent_and_keeps_id():
    face = Face(7)
    face.load_mesh([[0, 0, 0], [1, 0, 0], [0, 1, 0]], np.zeros((3, 3)), [[0, 1, 2]])
    face.landmarks = {1: 2}
    duplicate = face.copy()
    renamed = face.copy(3)
    duplicate.mesh.vertices[0, 0] = 99.0
    assert duplicate.id == 7
    assert renamed.id == 3
    assert renamed.landmarks == {1: 2}
    assert face.mesh.vertices[0, 0] == 0.0


def _synthetic(focal, t, cx=320.0, cy=240.0, count=40):
    gen = np.random.default_rng(1)
    pts3 = gen.uniform(-50, 50, size=(count, 3))
    depth = pts3[:, 2] + t[2]
    u = -focal * (pts3[:, 0] + t[0]) / depth + cx
    v = focal * (pts3[:, 1] + t[1]) / depth + cy
    return np.column_stack((u, v)), pts3


def test_calibration_recovers_focal_and_translation():
    t_true = np.array([5.0, -3.0, -500.0])
    pts2, pts3 = _synthetic(1000.0, t_true)
    camera = StaticCamera()
    t = camera.calibrate_without_rotation(320.0, 240.0, pts2, pts3)
    assert camera.focal == pytest.approx(1000.0, rel=1e-6)
    np.testing.assert_allclose(t, t_true, rtol=1e-6, atol=1e-6)


def test_ransac_calibration_recovers_translation():
    t_true = np.array([5.0, -3.0, -500.0])
    pts2, pts3 = _synthetic(1000.0, t_true)
    camera = StaticCamera()
    t = camera.calibrate_without_rotation_ransac(320.0, 240.0, pts2, pts3, random.Random(0))
    assert camera.focal == 1000.0
    np.testing.assert_allclose(t, t_true, rtol=1e-5, atol=1e-5)


def test_ransac_needs_six_points():
    pts2, pts3 = _synthetic(1000.0, np.array([0.0, 0.0, -500.0]), count=5)
    with pytest.raises(ValueError):
        StaticCamera().calibrate_without_rotation_ransac(320.0, 240.0, pts2, pts3, random.Random(0))