import math

import numpy as np
import pytest

from poseexpr.rendering import (
    RenderParams,
    estimate_color,
    triangle_normal,
    triangle_normal_from_vertex,
    vertex_normals,
)

SHAPE = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
FACES = np.array([[0, 1, 2]])
TEX = np.full((3, 3), 100.0)


def test_vertex_normals_of_flat_triangle_point_up():
    normals = vertex_normals(SHAPE, FACES)
    np.testing.assert_allclose(normals, np.tile([0.0, 0.0, 1.0], (3, 1)), atol=1e-12)


def test_vertex_normals_are_unit_length_on_a_tetrahedron():
    shape = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0], [0, 0, 1]], dtype=float)
    faces = np.array([[0, 2, 1], [0, 1, 3], [0, 3, 2], [1, 2, 3]])
    normals = vertex_normals(shape, faces)
    np.testing.assert_allclose(np.linalg.norm(normals, axis=1), np.ones(4))


def test_triangle_normal_from_vertex_weighted_by_right_angle():
    normal = triangle_normal_from_vertex(SHAPE, FACES, 0, 0)
    np.testing.assert_allclose(normal, [0.0, 0.0, math.pi / 2], atol=1e-12)


def test_triangle_normal_is_unit_and_value_scales_with_shape():
    normal, value = triangle_normal(SHAPE, FACES, 0)
    _, scaled_value = triangle_normal(SHAPE * 2, FACES, 0)
    np.testing.assert_allclose(normal, [0.0, 0.0, 1.0])
    assert scaled_value == pytest.approx(value * 16)


def _params(**overrides):
    base = dict(ambient=0.5, diffuse=0.25, light_direction=(0.0, 0.0), specular=0.0)
    base.update(overrides)
    return RenderParams(**base)


def test_back_lit_vertex_keeps_ambient_colour_only():
    colors = estimate_color(SHAPE, TEX, FACES, _params(light_direction=(0.0, math.pi)))
    np.testing.assert_allclose(colors, np.full((3, 3), 50.0))


def test_front_lit_vertex_adds_diffuse_term():
    colors = estimate_color(SHAPE, TEX, FACES, _params())
    np.testing.assert_allclose(colors, np.full((3, 3), 75.0))


def test_specular_adds_highlight():
    plain = estimate_color(SHAPE, TEX, FACES, _params())
    shiny = estimate_color(SHAPE, TEX, FACES, _params(specular=8.0))
    np.testing.assert_allclose(shiny - plain, np.full((3, 3), 0.25 * 8.0))


def test_colours_are_clamped_to_255():
    colors = estimate_color(SHAPE, np.full((3, 3), 1000.0), FACES, _params(ambient=1.0))
    np.testing.assert_allclose(colors, np.full((3, 3), 255.0))


def test_zero_contrast_gives_equal_channels():
    tex = np.array([[200.0, 50.0, 10.0]] * 3)
    colors = estimate_color(SHAPE, tex, FACES, _params(contrast=0.0))
    np.testing.assert_allclose(colors[:, 0], colors[:, 1])
    np.testing.assert_allclose(colors[:, 1], colors[:, 2])


def test_gain_and_offset_are_affine():
    base = estimate_color(SHAPE, TEX, FACES, _params())
    adjusted = estimate_color(SHAPE, TEX, FACES, _params(gain=2.0, offset=3.0))
    np.testing.assert_allclose(adjusted, 2.0 * base + 3.0)


def test_flipped_normal_shades_like_front_facing():
    upright = estimate_color(SHAPE, TEX, FACES, _params())
    flipped = estimate_color(SHAPE, TEX, FACES, _params(rotation=[math.pi, 0.0, 0.0]))
    np.testing.assert_allclose(flipped, upright, atol=1e-9)


def test_render_params_defaults_match_standard_lighting():
    params = RenderParams()
    np.testing.assert_allclose(params.ambient, [0.69225] * 3)
    np.testing.assert_allclose(params.diffuse, [0.30754] * 3)
    assert params.light_direction == (3.1415 / 4, 3.1415 / 4)