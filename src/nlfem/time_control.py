"""Fixed time stepping and Newmark-beta parameters for transient analyses.

Only the parameter handling and the stability checks live here. No transient
driver uses them yet; the solver in :mod:`nlfem.static_matrix` is quasi-static.
"""

from __future__ import annotations

from typing import Any, Mapping

from nlfem.exceptions import ConfigurationError


class TimeStepControl:
    """Uniform time steps between ``Start`` and ``End``."""

    def __init__(self, data: Mapping[str, Any]):
        for key, what in (("Start", "Start time"), ("End", "End time"), ("StepSize", '"StepSize"')):
            if data.get(key) is None:
                raise ConfigurationError(f'{what} not specified in input ("{key}")')

        self.start = float(data["Start"])
        self.end = float(data["End"])
        self.time_step_size = float(data["StepSize"])
        if not self.time_step_size > 0.0:
            raise ConfigurationError(f'"StepSize" must be positive (got {self.time_step_size})')
        if not self.end > self.start:
            raise ConfigurationError(f"End time ({self.end}) must be greater than the start time ({self.start})")

        self.time_steps = int((self.end - self.start) / self.time_step_size)
        self.current_time_step = 0

    def current_time(self) -> float:
        return self.start + self.current_time_step * self.time_step_size

    def increment(self) -> None:
        self.current_time_step += 1

    def is_finished(self) -> bool:
        return self.current_time_step >= self.time_steps


class NewmarkBeta:
    """Newmark-beta parameters with the unconditional-stability check.

    ``IntegrationOptions`` may give ``ViscousDamping`` (gamma) and
    ``BetaParameter`` (beta); without it the trapezoidal rule
    (gamma = 0.5, beta = 0.25) is used.
    """

    def __init__(self, data: Mapping[str, Any]):
        self.time_control = TimeStepControl(data)
        self.artificial_viscosity = 0.5
        self.beta_parameter = 0.25

        options = data.get("IntegrationOptions")
        if options:
            if options.get("ViscousDamping") is None:
                raise ConfigurationError("IntegrationOptions - ViscousDamping was not set")
            if options.get("BetaParameter") is None:
                raise ConfigurationError("IntegrationOptions - BetaParameter was not set")
            self.artificial_viscosity = float(options["ViscousDamping"])
            self.beta_parameter = float(options["BetaParameter"])

        if self.are_parameters_unstable():
            raise ConfigurationError(
                f"Chosen Newmark-Beta parameters are not stable "
                f"(beta={self.beta_parameter}, gamma={self.artificial_viscosity})"
            )

    def are_parameters_unstable(self) -> bool:
        """Chained check ``beta >= gamma/2 >= 0.25`` as evaluated left to right.

        The first comparison yields a boolean, which is then compared with
        0.25, so only ``beta >= gamma/2`` decides the outcome. Kept for
        compatibility with existing inputs; see
        :meth:`is_unconditionally_stable` for the two-inequality criterion.
        """
        first = float(self.beta_parameter >= self.artificial_viscosity / 2.0)
        return not first >= 0.25

    def is_unconditionally_stable(self) -> bool:
        """``beta >= gamma/2`` and ``gamma/2 >= 0.25``."""
        half_gamma = self.artificial_viscosity / 2.0
        return self.beta_parameter >= half_gamma and half_gamma >= 0.25

    def time_loop(self) -> bool:
        self.time_control.increment()
        return not self.time_control.is_finished()
