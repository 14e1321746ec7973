"""Hex8 shape functions (trilinear hexahedron)."""

from __future__ import annotations

import numpy as np

from nlfem.fem.quadrature import HexahedronQuadrature

# Local node coordinates (gmsh / VTK ordering): bottom face then top face,
# counter-clockwise.
HEX8_NODES = np.array(
    [
        [-1.0, -1.0, -1.0],
        [1.0, -1.0, -1.0],
        [1.0, 1.0, -1.0],
        [-1.0, 1.0, -1.0],
        [-1.0, -1.0, 1.0],
        [1.0, -1.0, 1.0],
        [1.0, 1.0, 1.0],
        [-1.0, 1.0, 1.0],
    ],
    dtype=float,
)


def hex8_shape(xi: float, eta: float, zeta: float):
    """Return ``N`` (8,) and ``dN`` (8, 3) w.r.t. ``(xi, eta, zeta)``."""
    a, b, c = HEX8_NODES[:, 0], HEX8_NODES[:, 1], HEX8_NODES[:, 2]
    fx = 1.0 + a * xi
    fy = 1.0 + b * eta
    fz = 1.0 + c * zeta
    N = 0.125 * fx * fy * fz
    dN = 0.125 * np.column_stack([a * fy * fz, b * fx * fz, c * fx * fy])
    return N, dN


class Hexahedron8:
    """Shape functions tabulated at the points of a hexahedron rule.

    Attributes
    ----------
    N : (nqp, 8)
    dN : (nqp, 8, 3) local derivatives
    """

    nodes_per_element = 8

    def __init__(self, quadrature: HexahedronQuadrature = None):
        self.quadrature = quadrature if quadrature is not None else HexahedronQuadrature(8)
        nqp = self.quadrature.points
        self.N = np.zeros((nqp, 8), dtype=float)
        self.dN = np.zeros((nqp, 8, 3), dtype=float)
        for l, (xi, eta, zeta) in enumerate(self.quadrature.coordinates):
            self.N[l], self.dN[l] = hex8_shape(xi, eta, zeta)

    def local_quadrature_extrapolation(self) -> np.ndarray:
        """Matrix E (8, nqp) with ``nodal = E @ quadrature_values``.

        Exact inverse for the 8 point rule; least-squares (pseudo-inverse)
        otherwise, which reduces to a constant for one point.
        """
        return np.linalg.pinv(self.N)


# Local faces of HEX8_NODES, counter-clockwise seen from outside, so that
# d/dxi x d/deta of the face map points out of a positively oriented element.
HEX8_FACES = np.array(
    [
        [0, 3, 2, 1],
        [4, 5, 6, 7],
        [0, 1, 5, 4],
        [2, 3, 7, 6],
        [0, 4, 7, 3],
        [1, 2, 6, 5],
    ],
    dtype=int,
)


def quad4_shape(xi: float, eta: float):
    """Bilinear face functions: ``N`` (4,) and ``dN`` (4, 2)."""
    a = np.array([-1.0, 1.0, 1.0, -1.0])
    b = np.array([-1.0, -1.0, 1.0, 1.0])
    N = 0.25 * (1.0 + a * xi) * (1.0 + b * eta)
    dN = 0.25 * np.column_stack([a * (1.0 + b * eta), b * (1.0 + a * xi)])
    return N, dN
