"""Newton convergence criterion (displacement and residual norms)."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from nlfem.exceptions import ConfigurationError

# Force norms at or below this are treated as "no load and no resistance"
FORCE_NORM_ZERO = 1e-12


def _positive(value: Any, key: str) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f'"{key}" must be a number (got {value!r})') from exc
    if not out > 0.0:
        raise ConfigurationError(f'"{key}" must be positive (got {out})')
    return out


@dataclass
class ResidualControl:
    """Convergence test of one Newton iteration.

    Relative mode (the default):

    * ``displacement_ratio = |du| / |d|``
    * ``residual_ratio = |r| / max(|r_0|, |f_ext|, |f_int|)``, forced to
      ``1.0`` when both force norms vanish so an unloaded, unresisted state
      never passes as converged.

    Absolute mode (``absolute_tolerance`` set) compares the raw norms ``|du|``
    and ``|r|`` against ``displacement_tolerance`` and ``residual_tolerance``.
    The value of ``absolute_tolerance`` only selects the mode.
    """

    displacement_tolerance: float = 1e-3
    residual_tolerance: float = 1e-3
    absolute_tolerance: Optional[float] = None

    initial_residual: float = field(default=1.0, init=False)
    displacement_ratio: float = field(default=math.inf, init=False)
    residual_ratio: float = field(default=math.inf, init=False)

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]] = None) -> "ResidualControl":
        """Build from a ``NonlinearOptions`` block."""
        data = data or {}
        absolute = data.get("AbsoluteTolerance")
        return cls(
            displacement_tolerance=_positive(data.get("DisplacementTolerance", 1e-3), "DisplacementTolerance"),
            residual_tolerance=_positive(data.get("ResidualTolerance", 1e-3), "ResidualTolerance"),
            absolute_tolerance=None if absolute is None else _positive(absolute, "AbsoluteTolerance"),
        )

    @property
    def is_relative(self) -> bool:
        return self.absolute_tolerance is None

    def set_initial_residual(self, norm: float) -> None:
        """Fix the normalisation base for the rest of the load step."""
        self.initial_residual = float(norm)

    def update(
        self,
        displacement_norm: float,
        increment_norm: float,
        residual_norm: float,
        external_force_norm: float,
        internal_force_norm: float,
    ) -> None:
        if not self.is_relative:
            self.displacement_ratio = float(increment_norm)
            self.residual_ratio = float(residual_norm)
            return

        if displacement_norm > 0.0:
            self.displacement_ratio = float(increment_norm) / float(displacement_norm)
        else:
            # nothing has moved yet: only a zero increment counts as converged
            self.displacement_ratio = 0.0 if increment_norm == 0.0 else 1.0

        max_force = max(float(external_force_norm), float(internal_force_norm))
        if max_force <= FORCE_NORM_ZERO:
            self.residual_ratio = 1.0
        else:
            self.residual_ratio = float(residual_norm) / max(self.initial_residual, max_force)

    def is_converged(self) -> bool:
        return (
            self.displacement_ratio <= self.displacement_tolerance
            and self.residual_ratio <= self.residual_tolerance
        )

    def summary(self) -> str:
        """One-line ``ratio / tolerance`` summary for progress output."""
        kind = "ratio" if self.is_relative else "norm"
        return (
            f"|du| {kind}={self.displacement_ratio:.3e} (tol {self.displacement_tolerance:.1e}), "
            f"|r| {kind}={self.residual_ratio:.3e} (tol {self.residual_tolerance:.1e})"
        )
