"""Vertex normals and Phong-style vertex shading for triangle meshes."""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from .epnp import rotation_vector_to_matrix

_GRAY_WEIGHTS = np.array([0.3, 0.59, 0.11])


def _vec3(value) -> np.ndarray:
    return np.broadcast_to(np.asarray(value, dtype=float), (3,)).copy()


@dataclass
class RenderParams:
    """Pose, lighting and colour-correction parameters used for shading."""

    rotation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))
    ambient: np.ndarray = field(default_factory=lambda: np.full(3, 0.69225))
    diffuse: np.ndarray = field(default_factory=lambda: np.full(3, 0.30754))
    light_direction: tuple[float, float] = (3.1415 / 4, 3.1415 / 4)
    contrast: float = 1.0
    gain: np.ndarray = field(default_factory=lambda: np.ones(3))
    offset: np.ndarray = field(default_factory=lambda: np.zeros(3))
    shininess: float = 1.0
    specular: float = 0.0

    def __post_init__(self) -> None:
        for name in ("rotation", "translation", "ambient", "diffuse", "gain", "offset"):
            setattr(self, name, _vec3(getattr(self, name)))
        elevation, azimuth = self.light_direction
        self.light_direction = (float(elevation), float(azimuth))
        self.contrast = float(self.contrast)
        self.shininess = float(self.shininess)
        self.specular = float(self.specular)

    @property
    def light_vector(self) -> np.ndarray:
        """Unit light direction derived from the two light angles."""
        elevation, azimuth = self.light_direction
        return np.array([
            math.cos(elevation) * math.sin(azimuth),
            math.sin(elevation),
            math.cos(elevation) * math.cos(azimuth),
        ])


def _as_shape(shape) -> np.ndarray:
    return np.asarray(shape, dtype=float).reshape(-1, 3)


def _as_faces(faces) -> np.ndarray:
    return np.asarray(faces, dtype=int).reshape(-1, 3)


def _angle_weighted_normals(shape: np.ndarray, faces: np.ndarray, vertex_id: int) -> np.ndarray:
    """Per-face normal at one corner, scaled by the corner angle (Fx3)."""
    i0 = faces[:, vertex_id]
    i1 = faces[:, (vertex_id + 1) % 3]
    i2 = faces[:, (vertex_id + 2) % 3]
    a = shape[i1] - shape[i0]
    b = shape[i2] - shape[i0]
    v = np.cross(a, b)
    with np.errstate(divide="ignore", invalid="ignore"):
        norm_v = np.linalg.norm(v, axis=1)
        cosine = np.sum(a * b, axis=1) / (np.linalg.norm(a, axis=1) * np.linalg.norm(b, axis=1))
        angle = np.arccos(cosine)
        return angle[:, None] * v / norm_v[:, None]


def triangle_normal_from_vertex(shape, faces, face_id, vertex_id) -> np.ndarray:
    """Normal of one triangle seen from one of its corners, weighted by that corner's angle."""
    shape = _as_shape(shape)
    face = _as_faces(faces)[face_id:face_id + 1]
    return _angle_weighted_normals(shape, face, vertex_id)[0]


def triangle_normal(shape, faces, face_id) -> tuple[np.ndarray, float]:
    """Unit normal of a triangle and half the squared length of its cross product."""
    shape = _as_shape(shape)
    i0, i1, i2 = _as_faces(faces)[face_id]
    v = np.cross(shape[i1] - shape[i0], shape[i2] - shape[i0])
    norm_v = float(np.linalg.norm(v))
    with np.errstate(divide="ignore", invalid="ignore"):
        normal = v / norm_v
    return normal, norm_v * norm_v / 2


def vertex_normals(shape, faces) -> np.ndarray:
    """Angle-weighted, normalised vertex normals (Vx3)."""
    shape = _as_shape(shape)
    faces = _as_faces(faces)
    normals = np.zeros_like(shape)
    for vertex_id in range(3):
        np.add.at(normals, faces[:, vertex_id], _angle_weighted_normals(shape, faces, vertex_id))
    with np.errstate(divide="ignore", invalid="ignore"):
        return normals / np.linalg.norm(normals, axis=1)[:, None]


def estimate_color(shape, tex, faces, params: RenderParams) -> np.ndarray:
    """Shade each vertex's texture colour under the given lighting (Vx3)."""
    shape = _as_shape(shape)
    tex = np.asarray(tex, dtype=float).reshape(-1, 3)
    normals = vertex_normals(shape, faces)
    rotation = rotation_vector_to_matrix(params.rotation)
    light = params.light_vector

    with np.errstate(divide="ignore", invalid="ignore"):
        n = normals @ rotation.T
        color = params.ambient * tex
        nl = n @ light
        ne = n[:, 2]
        lit = nl * ne >= 0
        flip = lit & ((nl < 0) | (ne < 0))
        sign = np.where(flip, -1.0, 1.0)
        nl = nl * sign
        n = n * sign[:, None]

        reflected = 2 * nl[:, None] * n - light
        diffuse_term = nl[:, None] * params.diffuse * tex
        re = reflected[:, 2] / np.linalg.norm(reflected, axis=1)
        positive = re > 0
        highlight = np.where(positive, np.power(np.where(positive, re, 0.0), params.shininess), 0.0)
        specular_term = highlight[:, None] * params.diffuse * params.specular
        shaded = np.clip(color + diffuse_term + specular_term, 0, 255)
        color = np.where(lit[:, None], shaded, color)

    gray = color @ _GRAY_WEIGHTS
    cc = params.contrast
    return params.gain * (cc * color + (1 - cc) * gray[:, None]) + params.offset