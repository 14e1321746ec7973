"""Error taxonomy.

The classes derive from the built-in exceptions raised in the same places
(``ValueError`` for bad input, ``RuntimeError`` for failures during a run),
so generic ``except ValueError`` / ``except RuntimeError`` handlers still
catch them.

* :class:`ConfigurationError` - missing/invalid input, raised at construction.
* :class:`ComputationalError` - element inversion, local return-mapping
  failure, non-finite values. Recoverable by a load-step cut-back.
* :class:`LinearSolveError` - singular or non-converged linear solve.
  Treated exactly like a computational error.
* :class:`ConvergenceError` - the adaptive stepper gave up.
"""

from __future__ import annotations


class ConfigurationError(ValueError):
    """Invalid or incomplete input data."""


class ComputationalError(RuntimeError):
    """Numerical failure inside one load increment."""


class LinearSolveError(ComputationalError):
    """The linear system could not be solved."""


class ConvergenceError(RuntimeError):
    """No converged solution could be obtained with the allowed step sizes."""
