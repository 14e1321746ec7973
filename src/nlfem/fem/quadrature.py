"""Fixed quadrature rules (hexahedron and unit sphere)."""

from __future__ import annotations

import math
from typing import Callable, TypeVar

import numpy as np

from nlfem.exceptions import ConfigurationError

T = TypeVar("T")


class NumericalQuadrature:
    """Weights + abscissae with the two traversal helpers used by assembly."""

    def __init__(self, weights: np.ndarray, coordinates: np.ndarray):
        self.weights = np.asarray(weights, dtype=float)
        self.coordinates = np.asarray(coordinates, dtype=float)

    @property
    def points(self) -> int:
        return int(self.weights.size)

    def integrate(self, initial: T, f: Callable[[int], T]) -> T:
        """Return ``initial + sum_l w_l * f(l)``."""
        total = initial
        for l, w in enumerate(self.weights):
            total = total + w * f(l)
        return total

    def for_each(self, f: Callable[[int], None]) -> None:
        for l in range(self.points):
            f(l)


_HEX_POINTS = {"one": 1, "six": 6, "eight": 8, "twentyseven": 27}


class HexahedronQuadrature(NumericalQuadrature):
    """Gauss rules on the bi-unit cube ``[-1, 1]^3``.

    ``points`` is 1, 6, 8, 27 or one of the names ``One``, ``Six``, ``Eight``,
    ``TwentySeven``.
    """

    def __init__(self, points=8):
        if isinstance(points, str):
            key = points.strip().lower()
            if key not in _HEX_POINTS:
                raise ConfigurationError(f"Unknown hexahedron quadrature '{points}'")
            points = _HEX_POINTS[key]
        points = int(points)

        if points == 1:
            w = np.array([8.0])
            x = np.zeros((1, 3))
        elif points == 6:
            w = np.full(6, 4.0 / 3.0)
            x = np.array(
                [[1.0, 0.0, 0.0], [-1.0, 0.0, 0.0], [0.0, 1.0, 0.0],
                 [0.0, -1.0, 0.0], [0.0, 0.0, 1.0], [0.0, 0.0, -1.0]]
            )
        elif points == 8:
            qp = 1.0 / math.sqrt(3.0)
            x = np.array([[i, j, k] for k in (-qp, qp) for j in (-qp, qp) for i in (-qp, qp)])
            w = np.ones(8)
        elif points == 27:
            a = math.sqrt(3.0 / 5.0)
            g = (-a, 0.0, a)
            gw = (5.0 / 9.0, 8.0 / 9.0, 5.0 / 9.0)
            x = np.array([[g[i], g[j], g[k]] for k in range(3) for j in range(3) for i in range(3)])
            w = np.array([gw[i] * gw[j] * gw[k] for k in range(3) for j in range(3) for i in range(3)])
        else:
            raise ConfigurationError(f"Hexahedron quadrature with {points} points is not available")

        super().__init__(w, x)


class UnitSphereQuadrature(NumericalQuadrature):
    """Symmetric rule on the unit sphere, normalised so the weights sum to one.

    ``BO21`` is the 21 direction scheme of Bazant & Oh (1986); each direction
    represents itself and its antipode, hence the factor two on the
    hemisphere weights.
    """

    def __init__(self, rule: str = "BO21"):
        if str(rule).upper() != "BO21":
            raise ConfigurationError(f"Unit sphere quadrature '{rule}' is not available (use BO21)")

        w1, w2, w3 = 0.0265214244093, 0.0199301476312, 0.0250712367487
        a, b = 0.387907304067, 0.836095596749
        s = 1.0 / math.sqrt(2.0)

        dirs = [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
        weights = [w1] * 3

        dirs += [[s, s, 0.0], [s, -s, 0.0], [s, 0.0, s], [s, 0.0, -s], [0.0, s, s], [0.0, s, -s]]
        weights += [w2] * 6

        dirs += [
            [a, a, b], [a, -a, b], [-a, a, b], [-a, -a, b],
            [a, b, a], [a, b, -a], [-a, b, a], [-a, b, -a],
            [b, a, a], [b, a, -a], [b, -a, a], [b, -a, -a],
        ]
        weights += [w3] * 12

        super().__init__(2.0 * np.array(weights), np.array(dirs))
