"""Structured hexahedral mesh generator and nodal coordinate store."""

from __future__ import annotations

from typing import Tuple

import numpy as np

from nlfem.exceptions import ConfigurationError
from nlfem.fem.hex8 import HEX8_FACES


def structured_hex_mesh(Lx: float, Ly: float, Lz: float, nx: int, ny: int, nz: int):
    """Block ``[0,Lx]x[0,Ly]x[0,Lz]`` split into ``nx*ny*nz`` hex8 elements."""
    if min(nx, ny, nz) < 1:
        raise ConfigurationError(f"Element counts must be >= 1 (got {nx}, {ny}, {nz})")
    if min(Lx, Ly, Lz) <= 0.0:
        raise ConfigurationError(f"Block lengths must be positive (got {Lx}, {Ly}, {Lz})")

    xs = np.linspace(0.0, Lx, nx + 1)
    ys = np.linspace(0.0, Ly, ny + 1)
    zs = np.linspace(0.0, Lz, nz + 1)
    nodes = np.array([[x, y, z] for z in zs for y in ys for x in xs], dtype=float)

    def nid(i, j, k):
        return (k * (ny + 1) + j) * (nx + 1) + i

    elems = []
    for k in range(nz):
        for j in range(ny):
            for i in range(nx):
                elems.append(
                    [
                        nid(i, j, k), nid(i + 1, j, k), nid(i + 1, j + 1, k), nid(i, j + 1, k),
                        nid(i, j, k + 1), nid(i + 1, j, k + 1), nid(i + 1, j + 1, k + 1), nid(i, j + 1, k + 1),
                    ]
                )
    return nodes, np.array(elems, dtype=int)


_SELECTORS = {
    "xmin": (0, min), "xmax": (0, max),
    "ymin": (1, min), "ymax": (1, max),
    "zmin": (2, min), "zmax": (2, max),
}


def boundary_nodes(nodes: np.ndarray, selector: str, tol: float = 1e-9) -> np.ndarray:
    """Node ids on a bounding-box face (``xmin`` ... ``zmax``) or ``all``."""
    key = str(selector).strip().lower()
    if key == "all":
        return np.arange(nodes.shape[0], dtype=int)
    if key not in _SELECTORS:
        raise ConfigurationError(f"Unknown boundary selector '{selector}'")
    axis, pick = _SELECTORS[key]
    target = pick(nodes[:, axis])
    span = float(np.ptp(nodes[:, axis])) or 1.0
    return np.where(np.abs(nodes[:, axis] - target) <= tol * span)[0].astype(int)


class NodalCoordinates:
    """Reference coordinates ``X`` and current coordinates ``x = X + u``."""

    def __init__(self, X: np.ndarray):
        self.X = np.asarray(X, dtype=float).copy()
        if self.X.ndim != 2 or self.X.shape[1] != 3:
            raise ConfigurationError(f"Nodal coordinates must have shape (n, 3), got {self.X.shape}")
        self.x = self.X.copy()

    @property
    def size(self) -> int:
        return int(self.X.shape[0])

    def initial_configuration(self, node_list=None) -> np.ndarray:
        return self.X if node_list is None else self.X[node_list]

    def current_configuration(self, node_list=None) -> np.ndarray:
        return self.x if node_list is None else self.x[node_list]

    def update_current_configuration(self, u: np.ndarray) -> None:
        self.x[...] = self.X + np.asarray(u, dtype=float).reshape(-1, 3)

    def displacement(self) -> np.ndarray:
        return self.x - self.X


def element_dofs(connectivity: np.ndarray, dofs_per_node: int = 3) -> np.ndarray:
    """Global dof list per element, node-major: ``[3a, 3a+1, 3a+2, ...]``."""
    conn = np.asarray(connectivity, dtype=int)
    return (conn[:, :, None] * dofs_per_node + np.arange(dofs_per_node)).reshape(conn.shape[0], -1)


def check_connectivity(connectivity: np.ndarray, n_nodes: int) -> Tuple[int, int]:
    conn = np.asarray(connectivity)
    if conn.ndim != 2:
        raise ConfigurationError("Connectivity must be a 2D array (elements x nodes_per_element)")
    if conn.size and (conn.min() < 0 or conn.max() >= n_nodes):
        raise ConfigurationError("Connectivity references node indices outside the coordinate store")
    return int(conn.shape[0]), int(conn.shape[1])


def boundary_faces(connectivity: np.ndarray, node_ids: np.ndarray) -> np.ndarray:
    """Exterior hex8 faces (nf, 4) whose four nodes all lie in ``node_ids``.

    A face shared by two elements is interior and never returned, so the
    ``all`` selector yields the whole outer surface.
    """
    conn = np.asarray(connectivity, dtype=int)
    faces = conn[:, HEX8_FACES].reshape(-1, 4)
    _, inverse, counts = np.unique(np.sort(faces, axis=1), axis=0, return_inverse=True, return_counts=True)
    exterior = counts[inverse.reshape(-1)] == 1
    inside = np.isin(faces, np.asarray(node_ids, dtype=int)).all(axis=1)
    return faces[exterior & inside]
