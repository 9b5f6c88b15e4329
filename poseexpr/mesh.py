"""Triangle meshes of faces: PLY reading and writing, normals, simple camera calibration."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass, field
from enum import Enum, auto

import numpy as np

from .plyio import split_text
from .rendering import triangle_normal_from_vertex, vertex_normals

_LEADING_INT = re.compile(r"\s*[+-]?\d+")
_LEADING_FLOAT = re.compile(r"\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")


class PlyFormatError(ValueError):
    """Raised when a PLY file cannot be understood."""


def _atoi(token: str) -> int:
    match = _LEADING_INT.match(token)
    return int(match.group()) if match else 0


def _atof(token: str) -> float:
    match = _LEADING_FLOAT.match(token)
    return float(match.group()) if match else 0.0


def _byte(value: float) -> int:
    return int(value) % 256


def _fmt(value: float) -> str:
    return f"{float(value):g}"


@dataclass
class Mesh:
    """Vertices (Vx3), triangles (Fx3) and optional per-vertex attributes."""

    vertices: np.ndarray = field(default_factory=lambda: np.zeros((0, 3)))
    faces: np.ndarray = field(default_factory=lambda: np.zeros((0, 3), dtype=int))
    colors: np.ndarray | None = None
    normals: np.ndarray | None = None
    texcoords: np.ndarray | None = None
    texture: np.ndarray | None = None


class _State(Enum):
    HEADER = auto()
    PROPERTIES = auto()
    FACE_HEADER = auto()
    VERTICES = auto()
    FACES = auto()
    DONE = auto()


_PROPERTY_NAMES = ("x", "y", "z", "red", "green", "blue")


class Face:
    """A face model: mesh, landmark-to-vertex map and a rigid pose."""

    def __init__(self, face_id=0):
        self.id = face_id
        self.mesh = Mesh()
        self.landmarks: dict[int, int] = {}
        self.rotation = np.zeros(3)
        self.translation = np.zeros(3)
        self.model_offset = np.zeros(3)
        self.model_scale = 1.0

    def copy(self, face_id=0) -> "Face":
        """Copy geometry, landmarks and pose; keep this id unless a non-zero one is given."""
        other = Face(face_id if face_id else self.id)
        other.landmarks = dict(self.landmarks)
        other.mesh = Mesh(
            vertices=self.mesh.vertices.copy(),
            faces=self.mesh.faces.copy(),
            texcoords=np.zeros((len(self.mesh.vertices), 2)),
        )
        other.rotation = self.rotation.copy()
        other.translation = self.translation.copy()
        other.model_offset = self.model_offset.copy()
        other.model_scale = self.model_scale
        return other

    def _transform(self, points: np.ndarray) -> np.ndarray:
        return (points + self.model_offset) * self.model_scale

    @staticmethod
    def _read_header(path) -> tuple[str, int]:
        with open(path, encoding="ascii", errors="replace") as handle:
            text = handle.read()
        if not text.startswith("ply"):
            raise PlyFormatError(f"{path}: not a PLY file")
        pos = text.find("element vertex")
        if pos < 0:
            raise PlyFormatError(f"{path}: no vertex element")
        tokens = text[pos + len("element vertex"):].split()
        if not tokens:
            raise PlyFormatError(f"{path}: missing vertex count")
        return text, int(tokens[0])

    @staticmethod
    def _data_lines(text: str) -> list[list[str]]:
        pos = text.find("end_header")
        if pos < 0:
            raise PlyFormatError("missing end_header")
        body = text[pos:].split("\n", 1)
        rest = body[1] if len(body) > 1 else ""
        return [line.split() for line in rest.splitlines() if line.strip()]

    def load_ply_model(self, path) -> None:
        """Load an ASCII triangle mesh, applying the model offset and scale."""
        text, vertex_count = self._read_header(path)
        pos = text.find("element face")
        if pos < 0:
            raise PlyFormatError(f"{path}: no face element")
        tokens = text[pos + len("element face"):].split()
        face_count = int(tokens[0]) if tokens else 0

        lines = self._data_lines(text)
        if len(lines) < vertex_count + face_count:
            raise PlyFormatError(f"{path}: truncated data")
        try:
            vertices = np.array([[float(v) for v in line[:3]] for line in lines[:vertex_count]])
        except ValueError as exc:
            raise PlyFormatError(f"{path}: bad vertex") from exc
        faces = []
        for line in lines[vertex_count:vertex_count + face_count]:
            if int(line[0]) != 3:
                raise PlyFormatError(f"{path}: only triangles are supported")
            faces.append([int(v) for v in line[1:4]])
        self.mesh.vertices = self._transform(vertices.reshape(-1, 3))
        self.mesh.faces = np.array(faces, dtype=int).reshape(-1, 3)

    def load_ply(self, path) -> None:
        """Load an ASCII PLY with x/y/z and optional red/green/blue vertex properties."""
        state = _State.HEADER
        props: list[str] = []
        vertex_count = face_count = 0
        vcount = fcount = 0
        vertices = np.zeros((0, 3))
        faces = np.zeros((0, 3), dtype=int)
        colors = None

        with open(path, encoding="ascii", errors="replace") as handle:
            for raw in handle:
                if state is _State.DONE:
                    break
                if len(raw) < 3:
                    continue
                tokens = split_text(raw)
                if not tokens or tokens[0] == "comment":
                    continue

                if state is _State.HEADER:
                    if len(tokens) != 3 or tokens[0] != "element" or tokens[1] != "vertex":
                        continue
                    vertex_count = _atoi(tokens[2])
                    if vertex_count < 1:
                        raise PlyFormatError(f"{path}: no vertices")
                    vertices = np.zeros((vertex_count, 3))
                    state = _State.PROPERTIES
                elif state is _State.PROPERTIES:
                    if tokens[0] == "end_header":
                        state = _State.VERTICES
                    elif tokens[0] == "element":
                        if len(tokens) >= 3 and tokens[1] == "face":
                            state = _State.FACE_HEADER
                            face_count = _atoi(tokens[2])
                            faces = np.zeros((face_count, 3), dtype=int)
                    elif len(tokens) == 3 and tokens[0] == "property" and tokens[2] in _PROPERTY_NAMES:
                        if tokens[2] == "red":
                            colors = np.zeros((vertex_count, 4))
                        props.append(tokens[2])
                elif state is _State.FACE_HEADER:
                    if tokens[0] == "end_header":
                        state = _State.VERTICES
                elif state is _State.VERTICES:
                    if len(tokens) < len(props):
                        raise PlyFormatError(f"{path}: vertex {vcount} is missing values")
                    for prop, token in zip(props, tokens):
                        if prop in ("x", "y", "z"):
                            vertices[vcount, "xyz".index(prop)] = _atof(token)
                        elif colors is not None:
                            channel = ("red", "green", "blue").index(prop)
                            colors[vcount, channel] = _atoi(token) / 255.0
                            if prop == "red":
                                colors[vcount, 3] = 1.0
                    vcount += 1
                    if vcount == vertex_count:
                        state = _State.FACES if face_count > 0 else _State.DONE
                elif state is _State.FACES:
                    if len(tokens) < 4:
                        raise PlyFormatError(f"{path}: face {fcount} is missing indices")
                    faces[fcount] = [_atoi(t) for t in tokens[1:4]]
                    fcount += 1
                    if fcount == face_count:
                        state = _State.DONE

        self.mesh.vertices = vertices
        self.mesh.faces = faces
        self.mesh.colors = colors

    def load_mesh(self, shape, tex, faces) -> None:
        """Set the mesh from Vx3 positions, Vx3 colours in [0, 255] and Fx3 triangles."""
        shape = np.asarray(shape, dtype=float).reshape(-1, 3)
        tex = np.asarray(tex, dtype=float).reshape(-1, 3)
        colors = np.ones((len(shape), 4))
        colors[:, :3] = tex / 255.0
        self.mesh.vertices = shape.copy()
        self.mesh.colors = colors
        self.mesh.faces = np.asarray(faces, dtype=int).reshape(-1, 3).copy()

    def load_ply_landmarks(self, path) -> None:
        """Map landmark numbers to the nearest mesh vertices.

        The file lists the landmark numbers after ``comment Landmark_seq:`` and
        their positions as vertices.
        """
        text, count = self._read_header(path)
        marker = "comment Landmark_seq:"
        pos = text.find(marker)
        if pos < 0:
            raise PlyFormatError(f"{path}: no landmark sequence")
        tokens = text[pos + len(marker):].split()[:count]
        try:
            numbers = [int(t) for t in tokens]
        except ValueError as exc:
            raise PlyFormatError(f"{path}: bad landmark sequence") from exc
        if len(numbers) < count:
            raise PlyFormatError(f"{path}: landmark sequence too short")

        lines = self._data_lines(text)
        if len(lines) < count:
            raise PlyFormatError(f"{path}: truncated landmark data")
        self.landmarks = {}
        vertices = self.mesh.vertices
        for number, line in zip(numbers, lines):
            point = self._transform(np.array([float(v) for v in line[:3]]))
            if len(vertices) == 0:
                continue
            distances = np.sum((vertices - point) ** 2, axis=1)
            self.landmarks[number] = int(np.argmin(distances))

    def save_ply(self, path) -> None:
        """Write the mesh as ASCII PLY with per-vertex colours."""
        mesh = self.mesh
        if mesh.colors is None and (mesh.texcoords is None or mesh.texture is None):
            raise ValueError("mesh has neither vertex colours nor a texture")
        lines = [
            "ply",
            "format ascii 1.0",
            f"element vertex {len(mesh.vertices)}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar blue",
            "property uchar green",
            "property uchar red",
            f"element face {len(mesh.faces)}",
            "property list uchar int vertex_indices",
            "end_header",
        ]
        for i, vertex in enumerate(mesh.vertices):
            coords = " ".join(_fmt(c) for c in vertex)
            if mesh.colors is not None:
                rgb = mesh.colors[i]
                channels = (rgb[2] * 255, rgb[1] * 255, rgb[0] * 255)
            else:
                height, width = mesh.texture.shape[:2]
                x = int(mesh.texcoords[i, 0] * width)
                y = int(mesh.texcoords[i, 1] * height)
                channels = mesh.texture[y, x][:3]
            lines.append(coords + " " + " ".join(str(_byte(c)) for c in channels))
        lines.extend(f"3 {a} {b} {c}" for a, b, c in mesh.faces)
        with open(path, "w", encoding="ascii") as handle:
            handle.write("\n".join(lines) + "\n")

    def estimate_normals(self) -> np.ndarray:
        """Compute and store angle-weighted vertex normals."""
        self.mesh.normals = vertex_normals(self.mesh.vertices, self.mesh.faces)
        return self.mesh.normals

    def triangle_normal_from_vertex(self, face_id, vertex_id) -> np.ndarray:
        """Angle-weighted normal of a triangle at one of its corners."""
        return triangle_normal_from_vertex(self.mesh.vertices, self.mesh.faces, face_id, vertex_id)


def _design(cx: float, cy: float, points_2d: np.ndarray, points_3d: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    n = len(points_2d)
    a = np.zeros((2 * n, 4))
    a[0::2, 0] = -points_3d[:, 0]
    a[0::2, 1] = points_3d[:, 2] * (cx - points_2d[:, 0])
    a[0::2, 2] = 1.0
    a[1::2, 0] = points_3d[:, 1]
    a[1::2, 1] = points_3d[:, 2] * (cy - points_2d[:, 1])
    a[1::2, 3] = 1.0
    return a, points_2d.reshape(-1)


def _normal_equations(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    return np.linalg.inv(a.T @ a) @ a.T @ b


@dataclass
class StaticCamera:
    """A camera with unknown focal length and principal point (cx, cy)."""

    cx: float = 0.0
    cy: float = 0.0
    focal: float = 0.0

    def _prepare(self, cx, cy, points_2d, points_3d):
        self.cx = float(cx)
        self.cy = float(cy)
        return (
            np.asarray(points_2d, dtype=float).reshape(-1, 2),
            np.asarray(points_3d, dtype=float).reshape(-1, 3),
        )

    def calibrate_without_rotation(self, cx, cy, points_2d, points_3d) -> np.ndarray:
        """Estimate focal length and translation from all points, assuming no rotation."""
        pts2, pts3 = self._prepare(cx, cy, points_2d, points_3d)
        x = _normal_equations(*_design(self.cx, self.cy, pts2, pts3))
        self.focal = x[0] / x[1]
        t = np.array([-(x[2] - self.cx) / x[0], (x[3] - self.cy) / x[0], 1.0 / x[1]])
        if t[2] > 0:
            t = np.array([(x[2] - self.cx) / x[0], -(x[3] - self.cy) / x[0], -1.0 / x[1]])
            self.focal = -self.focal
        return t

    def calibrate_without_rotation_ransac(self, cx, cy, points_2d, points_3d, rng=None) -> np.ndarray | None:
        """Robust variant: fit six-point samples with the focal length fixed to 1000.

        Returns the translation with the largest consensus, or None if no sample
        reprojects any point within ten pixels.
        """
        pts2, pts3 = self._prepare(cx, cy, points_2d, points_3d)
        n = len(pts2)
        sample_size = 6
        if n < sample_size:
            raise ValueError(f"need at least {sample_size} correspondences")
        rng = rng if rng is not None else random.Random()

        best_consensus = 0
        best_t = None
        for _ in range(100):
            order = list(range(n))
            for j in range(sample_size):
                jj = rng.randrange(n)
                order[j], order[jj] = order[jj], order[j]
            chosen = order[:sample_size]
            x = _normal_equations(*_design(self.cx, self.cy, pts2[chosen], pts3[chosen]))
            focal = x[0] / x[1]
            t = np.array([-(x[2] - self.cx) / x[0], (x[3] - self.cy) / x[0], 1.0 / x[1]])
            t *= 1000.0 / focal
            focal = 1000.0

            depth = pts3[:, 2] + t[2]
            u = -focal * (pts3[:, 0] + t[0]) / depth + self.cx
            v = focal * (pts3[:, 1] + t[1]) / depth + self.cy
            distance = (u - pts2[:, 0]) ** 2 + (v - pts2[:, 1]) ** 2
            consensus = int(np.count_nonzero(distance < 100))
            if consensus > best_consensus:
                best_consensus = consensus
                best_t = t
                self.focal = focal
                if best_consensus > 27:
                    break
        return best_t