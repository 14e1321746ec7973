"""Boundary condition helpers."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import numpy as np
import scipy.sparse as sp

from nlfem.exceptions import ConfigurationError
from nlfem.fem.hex8 import quad4_shape


class LoadHistory:
    """Ordered ``(time, value)`` pairs, linearly interpolated.

    Outside the tabulated range the first/last value is held.
    """

    def __init__(self, times: Sequence[float], values: Sequence[float]):
        t = np.asarray(times, dtype=float).reshape(-1)
        v = np.asarray(values, dtype=float).reshape(-1)
        if t.size == 0:
            raise ConfigurationError("A load history needs at least one (time, value) pair")
        if t.size != v.size:
            raise ConfigurationError(
                f"Load history has {t.size} times but {v.size} values"
            )
        if np.any(np.diff(t) <= 0.0):
            raise ConfigurationError(f"Load history times must be strictly increasing (got {t.tolist()})")
        self.times = t
        self.values = v

    def value(self, time: float) -> float:
        return float(np.interp(float(time), self.times, self.values))

    def held_at_end(self) -> "LoadHistory":
        """Constant history holding the final value (inherited boundaries)."""
        return LoadHistory([0.0], [self.values[-1]])

    def __repr__(self) -> str:
        return f"LoadHistory(times={self.times.tolist()}, values={self.values.tolist()})"


class Dirichlet:
    """Prescribed value on a set of dofs."""

    def __init__(self, dofs: Sequence[int], history: LoadHistory):
        self.dofs = np.unique(np.asarray(dofs, dtype=int))
        self.history = history

    def dof_view(self) -> np.ndarray:
        return self.dofs

    def value_view(self, time: float = 1.0) -> float:
        return self.history.value(time)

    def times(self) -> np.ndarray:
        return self.history.times


class NodalForce:
    """Non-follower point forces, the same magnitude on every listed dof."""

    def __init__(self, dofs: Sequence[int], history: LoadHistory):
        self.dofs = np.unique(np.asarray(dofs, dtype=int))
        self.history = history

    def times(self) -> np.ndarray:
        return self.history.times

    def add_to(self, f_ext: np.ndarray, time: float) -> None:
        f_ext[self.dofs] += self.history.value(time)


class BodyForce:
    """Volume force density along one axis, integrated as ``int N b dV``.

    The nodal weights ``int N dV`` are precomputed on the reference
    configuration by the mesh (see :meth:`SolidMesh.nodal_volumes`).
    """

    def __init__(self, axis: int, nodal_volume: np.ndarray, history: LoadHistory):
        if axis not in (0, 1, 2):
            raise ConfigurationError(f"Body force axis must be 0, 1 or 2 (got {axis})")
        self.axis = int(axis)
        self.nodal_volume = np.asarray(nodal_volume, dtype=float)
        self.history = history

    def times(self) -> np.ndarray:
        return self.history.times

    def add_to(self, f_ext: np.ndarray, time: float) -> None:
        f_ext[self.axis::3] += self.history.value(time) * self.nodal_volume


def face_integrals(X_faces: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Per-node ``int N dA`` (nf, 4) and ``int N n dA`` (nf, 4, 3).

    Bilinear faces on the reference configuration, 2x2 Gauss points. The
    normal follows the face node order (outward for :data:`HEX8_FACES`).
    """
    X_faces = np.asarray(X_faces, dtype=float)
    area = np.zeros(X_faces.shape[:2])
    normal = np.zeros(X_faces.shape)
    g = 1.0 / math.sqrt(3.0)
    for xi, eta in ((-g, -g), (g, -g), (g, g), (-g, g)):
        N, dN = quad4_shape(xi, eta)
        a1 = np.einsum("a,fai->fi", dN[:, 0], X_faces)
        a2 = np.einsum("a,fai->fi", dN[:, 1], X_faces)
        n_dA = np.cross(a1, a2)
        area += np.linalg.norm(n_dA, axis=1)[:, None] * N[None, :]
        normal += N[None, :, None] * n_dA[:, None, :]
    return area, normal


class Traction:
    """Non-follower traction along one axis, ``int N t dA`` over reference faces."""

    def __init__(self, axis: int, faces: np.ndarray, X: np.ndarray, history: LoadHistory):
        if axis not in (0, 1, 2):
            raise ConfigurationError(f"Traction axis must be 0, 1 or 2 (got {axis})")
        area, _ = face_integrals(X[faces])
        self.dofs = 3 * np.asarray(faces, dtype=int).reshape(-1) + int(axis)
        self.weights = area.reshape(-1)
        self.history = history

    def times(self) -> np.ndarray:
        return self.history.times

    def add_to(self, f_ext: np.ndarray, time: float) -> None:
        np.add.at(f_ext, self.dofs, self.history.value(time) * self.weights)


class Pressure:
    """Non-follower pressure, ``-p int N n dA``. Positive values push inwards."""

    def __init__(self, faces: np.ndarray, X: np.ndarray, history: LoadHistory):
        _, normal = face_integrals(X[faces])
        nodes = np.asarray(faces, dtype=int).reshape(-1)
        self.dofs = (3 * nodes[:, None] + np.arange(3)[None, :]).reshape(-1)
        self.weights = normal.reshape(-1)
        self.history = history

    def times(self) -> np.ndarray:
        return self.history.times

    def add_to(self, f_ext: np.ndarray, time: float) -> None:
        np.add.at(f_ext, self.dofs, -self.history.value(time) * self.weights)


def apply_dirichlet(
    K: sp.csr_matrix, r: np.ndarray, fixed_dofs: np.ndarray
) -> Tuple[np.ndarray, sp.csr_matrix, np.ndarray]:
    """
    Reduce ``K du = r`` to the free equations.

    Prescribed values have already been written into the displacement
    iterate, so the constrained dofs carry a zero increment and the Newton
    system is ``K_ff du_f = r_f``.
    """
    ndof = K.shape[0]
    fixed_ids = np.unique(np.asarray(fixed_dofs, dtype=int))
    free = np.setdiff1d(np.arange(ndof, dtype=int), fixed_ids)
    K_ff = K[free, :][:, free]
    r_f = r[free]
    return free, K_ff, r_f
