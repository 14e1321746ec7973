"""Per-quadrature-point state storage with commit/revert.

Every field is stored twice as a contiguous NumPy array (struct-of-arrays):

* ``current``   - freely overwritten during Newton iterations;
* ``committed`` - the last converged state.

:meth:`InternalVariables.commit` copies current -> committed for *all* fields,
:meth:`InternalVariables.revert` copies committed -> current. Arrays are
allocated once when a field is added and written in place afterwards, so
views returned by :meth:`get` stay valid for the lifetime of the store.

Quadrature points are indexed ``element * points_per_element + local_point``.
"""

from __future__ import annotations

from typing import Dict, Optional, Tuple

import numpy as np

from nlfem.exceptions import ConfigurationError


# Tensor fields, shape (n, 3, 3)
DEFORMATION_GRADIENT = "DeformationGradient"
DISPLACEMENT_GRADIENT = "DisplacementGradient"
CAUCHY = "Cauchy"
KIRCHHOFF = "Kirchhoff"
LINEARISED_STRAIN = "LinearisedStrain"
LINEARISED_PLASTIC_STRAIN = "LinearisedPlasticStrain"

# Scalar fields, shape (n,)
DET_F = "DetF"
VON_MISES_STRESS = "VonMisesStress"
EFFECTIVE_PLASTIC_STRAIN = "EffectivePlasticStrain"
CHAINS = "Chains"
SHEAR_MODULUS = "ShearModulus"

# Matrix fields, shape (n, 6, 6)
TANGENT_OPERATOR = "TangentOperator"

TENSOR_FIELDS = (
    DEFORMATION_GRADIENT,
    DISPLACEMENT_GRADIENT,
    CAUCHY,
    KIRCHHOFF,
    LINEARISED_STRAIN,
    LINEARISED_PLASTIC_STRAIN,
)
SCALAR_FIELDS = (DET_F, VON_MISES_STRESS, EFFECTIVE_PLASTIC_STRAIN, CHAINS, SHEAR_MODULUS)
MATRIX_FIELDS = (TANGENT_OPERATOR,)


def field_shape(name: str) -> Tuple[int, ...]:
    """Per-point shape of a known field name."""
    if name in TENSOR_FIELDS:
        return (3, 3)
    if name in SCALAR_FIELDS:
        return ()
    if name in MATRIX_FIELDS:
        return (6, 6)
    raise ConfigurationError(f"Unknown internal variable '{name}'")


class InternalVariables:
    """Named per-point fields with one level of rollback."""

    def __init__(self, size: int):
        if int(size) < 0:
            raise ConfigurationError(f"Internal variable size must be >= 0 (got {size})")
        self.size = int(size)
        self._current: Dict[str, np.ndarray] = {}
        self._committed: Dict[str, np.ndarray] = {}

    def add(self, *names: str, value: Optional[np.ndarray] = None) -> None:
        """Register fields, zero-initialised or broadcast from ``value``.

        ``value`` is broadcast against the full ``(size, *shape)`` array, so a
        single 3x3 tensor or 6x6 matrix initialises every point.
        """
        for name in names:
            shape = field_shape(name)
            if name in self._current:
                raise ConfigurationError(f"Internal variable '{name}' has already been added")
            arr = np.zeros((self.size,) + shape, dtype=float)
            if value is not None:
                arr[...] = np.asarray(value, dtype=float)
            self._current[name] = arr
            self._committed[name] = arr.copy()

    def has(self, name: str) -> bool:
        return name in self._current

    def get(self, name: str) -> np.ndarray:
        """Writable view of the current values of ``name``."""
        try:
            return self._current[name]
        except KeyError:
            raise ConfigurationError(f"Internal variable '{name}' was requested but never added") from None

    def __call__(self, *names: str):
        if len(names) == 1:
            return self.get(names[0])
        return tuple(self.get(n) for n in names)

    def committed(self, name: str) -> np.ndarray:
        """Read-only view of the last converged values of ``name``."""
        self.get(name)
        view = self._committed[name].view()
        view.flags.writeable = False
        return view

    def names(self) -> Tuple[str, ...]:
        return tuple(self._current.keys())

    def commit(self) -> None:
        for name, arr in self._current.items():
            self._committed[name][...] = arr

    def revert(self) -> None:
        for name, arr in self._committed.items():
            self._current[name][...] = arr

    def __len__(self) -> int:
        return self.size
