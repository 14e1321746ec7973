"""Adaptive load stepping (pseudo-time control of the static solver)."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from nlfem.exceptions import ConfigurationError, ConvergenceError

GROWTH_FACTOR = 1.5
CUTBACK_FACTOR = 0.5
STEPS_BEFORE_GROWTH = 2


class AdaptiveLoadStep:
    """Proposes pseudo-times between ``start`` and ``end``.

    The solver asks for :meth:`step_time`, attempts equilibrium there and
    reports the outcome through :meth:`update_convergence_state`:

    * success accepts the time; with ``adaptive`` the step grows by
      ``1.5x`` (capped at ``maximum``) after two consecutive successes;
    * failure halves the step and retries from the last converged time.
      A halved step below ``minimum`` or more than ``max_cutbacks``
      consecutive cut-backs raise :class:`ConvergenceError`.

    Attempted times are clamped so they never step over a mandatory time
    (e.g. the knots of the boundary load histories).
    """

    def __init__(
        self,
        start: float = 0.0,
        end: float = 1.0,
        initial: Optional[float] = None,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
        adaptive: bool = True,
        mandatory_times: Sequence[float] = (),
        max_cutbacks: int = 12,
        debug: bool = False,
    ):
        self.adaptive = bool(adaptive)
        self.max_cutbacks = int(max_cutbacks)
        self.debug = bool(debug)
        if self.max_cutbacks < 0:
            raise ConfigurationError(f"MaximumCutbacks must be >= 0 (got {max_cutbacks})")
        self.step_count = 0
        self.reset(start, end, initial, minimum, maximum, mandatory_times)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], mandatory_times: Sequence[float] = (), debug: bool = False):
        """Build from a ``Time`` block (``Start``, ``End``, ``Increments``)."""
        if data is None or "End" not in data:
            raise ConfigurationError('"Time" requires an "End" value')
        increments = data.get("Increments")
        if not increments or "Initial" not in increments:
            raise ConfigurationError('"Time" requires "Increments" with an "Initial" step size')
        return cls(
            start=float(data.get("Start", 0.0)),
            end=float(data["End"]),
            initial=float(increments["Initial"]),
            minimum=increments.get("Minimum"),
            maximum=increments.get("Maximum"),
            adaptive=bool(increments.get("Adaptive", True)),
            mandatory_times=mandatory_times,
            max_cutbacks=int(increments.get("MaximumCutbacks", 12)),
            debug=debug,
        )

    def reset(
        self,
        start: float,
        end: float,
        initial: Optional[float] = None,
        minimum: Optional[float] = None,
        maximum: Optional[float] = None,
        mandatory_times: Sequence[float] = (),
    ) -> None:
        """Prepare a new load case over ``[start, end]``."""
        start, end = float(start), float(end)
        if not end > start:
            raise ConfigurationError(f"Load step end time ({end}) must be greater than the start time ({start})")
        span = end - start

        initial = span if initial is None else float(initial)
        minimum = 1e-5 * span if minimum is None else float(minimum)
        maximum = span if maximum is None else float(maximum)
        if not 0.0 < minimum <= initial <= maximum:
            raise ConfigurationError(
                f"Load increments must satisfy 0 < Minimum <= Initial <= Maximum "
                f"(got {minimum}, {initial}, {maximum})"
            )

        self.start, self.end = start, end
        self.minimum, self.maximum = minimum, maximum
        self._tol = 1e-12 * span
        self._last = start
        self._dt = initial
        self._consecutive = 0
        self._cutbacks = 0

        knots = np.unique(np.asarray(mandatory_times, dtype=float).reshape(-1))
        inside = (knots > start + self._tol) & (knots < end - self._tol)
        self.mandatory_times = np.append(knots[inside], end)

    # ------------------------------------------------------------------

    def step_time(self) -> float:
        """Pseudo-time of the step being attempted."""
        target = self._last + self._dt
        ahead = self.mandatory_times[self.mandatory_times > self._last + self._tol]
        if ahead.size and target >= ahead[0] - self._tol:
            return float(ahead[0])
        return float(min(target, self.end))

    def last_step_time(self) -> float:
        """Last converged pseudo-time."""
        return float(self._last)

    def current_time_step_size(self) -> float:
        return self.step_time() - self._last

    def load_factor(self) -> float:
        return (self.step_time() - self.start) / (self.end - self.start)

    def is_fully_applied(self) -> bool:
        return self._last >= self.end - self._tol

    def update_convergence_state(self, converged: bool) -> None:
        if converged:
            self._last = self.step_time()
            self.step_count += 1
            self._cutbacks = 0
            self._consecutive += 1
            if self.adaptive and self._consecutive >= STEPS_BEFORE_GROWTH and self._dt < self.maximum:
                self._dt = min(GROWTH_FACTOR * self._dt, self.maximum)
                self._consecutive = 0
                if self.debug:
                    print(f"    [substep] increasing step size to {self._dt:.4e}")
            return

        self._consecutive = 0
        self._cutbacks += 1
        halved = CUTBACK_FACTOR * self.current_time_step_size()
        if halved < self.minimum:
            raise ConvergenceError(
                f"Load step from t={self._last:.6e} failed and the halved step {halved:.3e} "
                f"is below the minimum {self.minimum:.3e}"
            )
        if self._cutbacks > self.max_cutbacks:
            raise ConvergenceError(
                f"Load step from t={self._last:.6e} failed after {self.max_cutbacks} consecutive cut-backs"
            )
        self._dt = halved
        print(
            f"    [substep] no convergence, retrying from t={self._last:.6e} "
            f"with step {self._dt:.4e} (cut-back {self._cutbacks}/{self.max_cutbacks})"
        )
