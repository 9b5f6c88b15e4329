"""EPnP pose estimation from 2D-3D correspondences, plus rotation helpers."""

from __future__ import annotations

import math
from typing import NamedTuple

import numpy as np

_PAIRS = ((0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3))
_GAUSS_NEWTON_ITERATIONS = 5


class SingularMatrixError(ArithmeticError):
    """Raised when the QR solver meets a zero column."""


class PoseEstimate(NamedTuple):
    """Rotation matrix, translation vector and mean reprojection error."""

    rotation: np.ndarray
    translation: np.ndarray
    error: float


def qr_solve(a, b) -> np.ndarray:
    """Solve ``a x = b`` in the least-squares sense by Householder QR."""
    a = np.array(a, dtype=float)
    b = np.array(b, dtype=float).reshape(-1)
    nr, nc = a.shape
    if nr < nc:
        raise ValueError("system must have at least as many rows as columns")
    a1 = np.zeros(nc)
    a2 = np.zeros(nc)

    for k in range(nc):
        # The pivot scale is taken from rows k .. nr-2, leaving out the last row.
        eta = float(np.max(np.abs(a[k:max(k + 1, nr - 1), k])))
        if eta == 0:
            raise SingularMatrixError("matrix is singular")
        a[k:, k] *= 1.0 / eta
        sigma = math.sqrt(float(a[k:, k] @ a[k:, k]))
        if a[k, k] < 0:
            sigma = -sigma
        a[k, k] += sigma
        a1[k] = sigma * a[k, k]
        a2[k] = -eta * sigma
        if k + 1 < nc:
            tau = (a[k:, k] @ a[k:, k + 1:]) / a1[k]
            a[k:, k + 1:] -= np.outer(a[k:, k], tau)

    for j in range(nc):
        tau = (a[j:, j] @ b[j:]) / a1[j]
        b[j:] -= tau * a[j:, j]

    x = np.zeros(nc)
    for i in reversed(range(nc)):
        x[i] = (b[i] - a[i, i + 1:] @ x[i + 1:]) / a2[i]
    return x


def mat_to_quat(rotation) -> np.ndarray:
    """Convert a rotation matrix to a unit quaternion (x, y, z, w)."""
    r = np.asarray(rotation, dtype=float)
    tr = r[0, 0] + r[1, 1] + r[2, 2]
    if tr > 0.0:
        q = np.array([r[1, 2] - r[2, 1], r[2, 0] - r[0, 2], r[0, 1] - r[1, 0], tr + 1.0])
        n4 = q[3]
    elif r[0, 0] > r[1, 1] and r[0, 0] > r[2, 2]:
        q = np.array([
            1.0 + r[0, 0] - r[1, 1] - r[2, 2],
            r[1, 0] + r[0, 1],
            r[2, 0] + r[0, 2],
            r[1, 2] - r[2, 1],
        ])
        n4 = q[0]
    elif r[1, 1] > r[2, 2]:
        q = np.array([
            r[1, 0] + r[0, 1],
            1.0 + r[1, 1] - r[0, 0] - r[2, 2],
            r[2, 1] + r[1, 2],
            r[2, 0] - r[0, 2],
        ])
        n4 = q[1]
    else:
        q = np.array([
            r[2, 0] + r[0, 2],
            r[2, 1] + r[1, 2],
            1.0 + r[2, 2] - r[0, 0] - r[1, 1],
            r[0, 1] - r[1, 0],
        ])
        n4 = q[2]
    return q * (0.5 / math.sqrt(n4))


def relative_error(rotation_true, translation_true, rotation_est, translation_est) -> tuple[float, float]:
    """Return relative rotation (quaternion) and translation errors."""
    q_true = mat_to_quat(rotation_true)
    q_est = mat_to_quat(rotation_est)
    norm_true = float(np.linalg.norm(q_true))
    rot_err = min(
        float(np.linalg.norm(q_true - q_est)) / norm_true,
        float(np.linalg.norm(q_true + q_est)) / norm_true,
    )
    t_true = np.asarray(translation_true, dtype=float)
    t_est = np.asarray(translation_est, dtype=float)
    transl_err = float(np.linalg.norm(t_true - t_est)) / float(np.linalg.norm(t_true))
    return rot_err, transl_err


def rotation_vector_to_matrix(rvec) -> np.ndarray:
    """Convert an axis-angle vector to a 3x3 rotation matrix."""
    r = np.asarray(rvec, dtype=float).reshape(3)
    theta = float(np.linalg.norm(r))
    if theta < np.finfo(float).eps:
        return np.eye(3)
    k = r / theta
    skew = np.array([[0.0, -k[2], k[1]], [k[2], 0.0, -k[0]], [-k[1], k[0], 0.0]])
    c, s = math.cos(theta), math.sin(theta)
    return c * np.eye(3) + (1.0 - c) * np.outer(k, k) + s * skew


def matrix_to_rotation_vector(matrix) -> np.ndarray:
    """Convert a 3x3 rotation matrix to an axis-angle vector."""
    u, _, vt = np.linalg.svd(np.asarray(matrix, dtype=float))
    r = u @ vt
    rx, ry, rz = r[2, 1] - r[1, 2], r[0, 2] - r[2, 0], r[1, 0] - r[0, 1]
    s = math.sqrt((rx * rx + ry * ry + rz * rz) * 0.25)
    c = min(max((r[0, 0] + r[1, 1] + r[2, 2] - 1.0) * 0.5, -1.0), 1.0)
    theta = math.acos(c)

    if s < 1e-5:
        if c > 0:
            return np.zeros(3)
        rx = math.sqrt(max((r[0, 0] + 1.0) * 0.5, 0.0))
        ry = math.sqrt(max((r[1, 1] + 1.0) * 0.5, 0.0)) * (-1.0 if r[0, 1] < 0 else 1.0)
        rz = math.sqrt(max((r[2, 2] + 1.0) * 0.5, 0.0)) * (-1.0 if r[0, 2] < 0 else 1.0)
        if abs(rx) < abs(ry) and abs(rx) < abs(rz) and (r[1, 2] > 0) != (ry * rz > 0):
            rz = -rz
        vec = np.array([rx, ry, rz])
        return vec * (theta / float(np.linalg.norm(vec)))

    return np.array([rx, ry, rz]) * (theta / (2.0 * s))


def project_points(points, rvec, tvec, camera_matrix) -> np.ndarray:
    """Project Nx3 points through a pinhole camera without distortion (Nx2)."""
    pts = np.asarray(points, dtype=float).reshape(-1, 3)
    k = np.asarray(camera_matrix, dtype=float)
    cam = pts @ rotation_vector_to_matrix(rvec).T + np.asarray(tvec, dtype=float).reshape(3)
    x = cam[:, 0] / cam[:, 2]
    y = cam[:, 1] / cam[:, 2]
    return np.column_stack((k[0, 0] * x + k[0, 2], k[1, 1] * y + k[1, 2]))


def _choose_control_points(pws: np.ndarray) -> np.ndarray:
    centroid = pws.mean(axis=0)
    centered = pws - centroid
    u, dc, _ = np.linalg.svd(centered.T @ centered)
    cws = np.empty((4, 3))
    cws[0] = centroid
    for i in range(1, 4):
        cws[i] = centroid + math.sqrt(dc[i - 1] / len(pws)) * u[:, i - 1]
    return cws


def _barycentric_coordinates(pws: np.ndarray, cws: np.ndarray) -> np.ndarray:
    cc_inv = np.linalg.pinv((cws[1:] - cws[0]).T)
    alphas = np.empty((len(pws), 4))
    alphas[:, 1:] = (pws - cws[0]) @ cc_inv.T
    alphas[:, 0] = 1.0 - alphas[:, 1:].sum(axis=1)
    return alphas


def _compute_l_6x10(ut: np.ndarray) -> np.ndarray:
    vs = [ut[11 - i].reshape(4, 3) for i in range(4)]
    dv = [[v[a] - v[b] for a, b in _PAIRS] for v in vs]
    rows = []
    for i in range(6):
        d0, d1, d2, d3 = dv[0][i], dv[1][i], dv[2][i], dv[3][i]
        rows.append([
            d0 @ d0, 2.0 * (d0 @ d1), d1 @ d1, 2.0 * (d0 @ d2), 2.0 * (d1 @ d2),
            d2 @ d2, 2.0 * (d0 @ d3), 2.0 * (d1 @ d3), 2.0 * (d2 @ d3), d3 @ d3,
        ])
    return np.array(rows)


def _compute_rho(cws: np.ndarray) -> np.ndarray:
    return np.array([float(np.sum((cws[a] - cws[b]) ** 2)) for a, b in _PAIRS])


def _lstsq(matrix: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    return np.linalg.lstsq(matrix, rhs, rcond=None)[0]


def _betas_approx_1(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b4 = _lstsq(l_6x10[:, [0, 1, 3, 6]], rho)
    with np.errstate(divide="ignore", invalid="ignore"):
        if b4[0] < 0:
            b0 = math.sqrt(-b4[0])
            return np.array([b0, -b4[1] / b0, -b4[2] / b0, -b4[3] / b0]) if b0 else np.array(
                [b0, *(-b4[1:] / np.float64(b0))])
        b0 = np.float64(math.sqrt(b4[0]))
        return np.array([b0, b4[1] / b0, b4[2] / b0, b4[3] / b0])


def _leading_betas(b: np.ndarray) -> np.ndarray:
    if b[0] < 0:
        beta0 = math.sqrt(-b[0])
        beta1 = math.sqrt(-b[2]) if b[2] < 0 else 0.0
    else:
        beta0 = math.sqrt(b[0])
        beta1 = math.sqrt(b[2]) if b[2] > 0 else 0.0
    if b[1] < 0:
        beta0 = -beta0
    return np.array([beta0, beta1, 0.0, 0.0])


def _betas_approx_2(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    return _leading_betas(_lstsq(l_6x10[:, :3], rho))


def _betas_approx_3(l_6x10: np.ndarray, rho: np.ndarray) -> np.ndarray:
    b5 = _lstsq(l_6x10[:, :5], rho)
    betas = _leading_betas(b5)
    with np.errstate(divide="ignore", invalid="ignore"):
        betas[2] = np.float64(b5[3]) / np.float64(betas[0])
    return betas


def _gauss_newton(l_6x10: np.ndarray, rho: np.ndarray, betas: np.ndarray) -> np.ndarray:
    betas = np.array(betas, dtype=float)
    for _ in range(_GAUSS_NEWTON_ITERATIONS):
        b0, b1, b2, b3 = betas
        a = np.column_stack((
            2 * l_6x10[:, 0] * b0 + l_6x10[:, 1] * b1 + l_6x10[:, 3] * b2 + l_6x10[:, 6] * b3,
            l_6x10[:, 1] * b0 + 2 * l_6x10[:, 2] * b1 + l_6x10[:, 4] * b2 + l_6x10[:, 7] * b3,
            l_6x10[:, 3] * b0 + l_6x10[:, 4] * b1 + 2 * l_6x10[:, 5] * b2 + l_6x10[:, 8] * b3,
            l_6x10[:, 6] * b0 + l_6x10[:, 7] * b1 + l_6x10[:, 8] * b2 + 2 * l_6x10[:, 9] * b3,
        ))
        products = np.array([
            b0 * b0, b0 * b1, b1 * b1, b0 * b2, b1 * b2,
            b2 * b2, b0 * b3, b1 * b3, b2 * b3, b3 * b3,
        ])
        b = rho - l_6x10 @ products
        try:
            step = qr_solve(a, b)
        except SingularMatrixError:
            return betas
        betas = betas + step
    return betas


def _estimate_r_and_t(pcs: np.ndarray, pws: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    pc0 = pcs.mean(axis=0)
    pw0 = pws.mean(axis=0)
    abt = (pcs - pc0).T @ (pws - pw0)
    u, _, vt = np.linalg.svd(abt)
    rotation = u @ vt
    if np.linalg.det(rotation) < 0:
        rotation[2] = -rotation[2]
    translation = pc0 - rotation @ pw0
    return rotation, translation


class EPnP:
    """Camera pose from n 2D-3D point correspondences.

    The camera is taken to look down the negative z axis: a solution with
    points in front of it at positive depth is mirrored.
    """

    def __init__(self, uc, vc, fu, fv):
        self.uc = float(uc)
        self.vc = float(vc)
        self.fu = float(fu)
        self.fv = float(fv)
        self._world: list[tuple[float, float, float]] = []
        self._image: list[tuple[float, float]] = []

    @property
    def number_of_correspondences(self) -> int:
        return len(self._world)

    def reset_correspondences(self) -> None:
        """Forget every correspondence added so far."""
        self._world.clear()
        self._image.clear()

    def add_correspondence(self, x, y, z, u, v) -> None:
        """Add a world point (x, y, z) seen at pixel (u, v)."""
        self._world.append((float(x), float(y), float(z)))
        self._image.append((float(u), float(v)))

    def _fill_m(self, alphas: np.ndarray, us: np.ndarray) -> np.ndarray:
        n = len(alphas)
        m = np.zeros((2 * n, 12))
        for i, (a, (u, v)) in enumerate(zip(alphas, us)):
            m[2 * i, 0::3] = a * self.fu
            m[2 * i, 2::3] = a * (self.uc - u)
            m[2 * i + 1, 1::3] = a * self.fv
            m[2 * i + 1, 2::3] = a * (self.vc - v)
        return m

    def _r_and_t(self, ut, betas, alphas, pws) -> PoseEstimate:
        ccs = sum(betas[i] * ut[11 - i].reshape(4, 3) for i in range(4))
        pcs = alphas @ ccs
        if pcs[0, 2] > 0.0:
            pcs = -pcs
        rotation, translation = _estimate_r_and_t(pcs, pws)
        return PoseEstimate(rotation, translation, self.reprojection_error(rotation, translation))

    def compute_pose(self) -> PoseEstimate:
        """Estimate rotation and translation; keep the best of three solutions."""
        if not self._world:
            raise ValueError("no correspondences to estimate a pose from")
        pws = np.array(self._world)
        us = np.array(self._image)
        cws = _choose_control_points(pws)
        alphas = _barycentric_coordinates(pws, cws)
        m = self._fill_m(alphas, us)
        u, _, _ = np.linalg.svd(m.T @ m)
        ut = u.T

        l_6x10 = _compute_l_6x10(ut)
        rho = _compute_rho(cws)

        candidates = [
            self._r_and_t(ut, _gauss_newton(l_6x10, rho, approx(l_6x10, rho)), alphas, pws)
            for approx in (_betas_approx_1, _betas_approx_2, _betas_approx_3)
        ]
        best = candidates[0]
        if candidates[1].error < best.error:
            best = candidates[1]
        if candidates[2].error < best.error:
            best = candidates[2]
        return best

    def reprojection_error(self, rotation, translation) -> float:
        """Mean pixel distance between observed and reprojected points."""
        pws = np.array(self._world)
        us = np.array(self._image)
        cam = pws @ np.asarray(rotation, dtype=float).T + np.asarray(translation, dtype=float)
        with np.errstate(divide="ignore", invalid="ignore"):
            ue = self.uc + self.fu * cam[:, 0] / cam[:, 2]
            ve = self.vc + self.fv * cam[:, 1] / cam[:, 2]
        return float(np.mean(np.hypot(us[:, 0] - ue, us[:, 1] - ve)))