"""Minimal ASCII PLY writing and tokenising helpers."""

from __future__ import annotations

import os
import re
from typing import Iterable

import numpy as np

_DELIMITERS = re.compile(r"[ ,\n]+")


def split_text(text: str) -> list[str]:
    """Split a line into tokens separated by spaces, commas or newlines."""
    return [token for token in _DELIMITERS.split(text) if token]


def _fmt(value: float) -> str:
    """Format a float with six significant digits, as stream output does."""
    return f"{float(value):g}"


def _header(vertex_count: int, extra: Iterable[str]) -> list[str]:
    lines = [
        "ply",
        "format ascii 1.0",
        f"element vertex {vertex_count}",
        "property float x",
        "property float y",
        "property float z",
    ]
    lines.extend(extra)
    lines.append("end_header")
    return lines


def write_ply(path: str | os.PathLike, vertices, colors, faces) -> None:
    """Write a coloured triangle mesh as ASCII PLY.

    ``vertices`` and ``colors`` are Vx3, ``faces`` is Fx3. Colours are clamped
    to [0, 255] and truncated to integers.
    """
    vertices = np.asarray(vertices, dtype=float).reshape(-1, 3)
    colors = np.clip(np.asarray(colors, dtype=float).reshape(-1, 3), 0, 255)
    faces = np.asarray(faces, dtype=int).reshape(-1, 3)

    lines = _header(
        len(vertices),
        [
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            f"element face {len(faces)}",
            "property list uchar int vertex_indices",
        ],
    )
    for vertex, color in zip(vertices, colors):
        coords = " ".join(_fmt(c) for c in vertex)
        rgb = " ".join(str(int(c)) for c in color)
        lines.append(f"{coords} {rgb}")
    for a, b, c in faces:
        lines.append(f"3 {a} {b} {c} ")

    with open(path, "w", encoding="ascii") as handle:
        handle.write("\n".join(lines) + "\n")


def write_ply_points(path: str | os.PathLike, vertices) -> None:
    """Write a point cloud (Vx3) as ASCII PLY with positions only."""
    vertices = np.asarray(vertices, dtype=float).reshape(-1, 3)
    lines = _header(len(vertices), [])
    lines.extend(" ".join(_fmt(c) for c in vertex) for vertex in vertices)
    with open(path, "w", encoding="ascii") as handle:
        handle.write("\n".join(lines) + "\n")