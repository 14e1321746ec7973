"""Sparse linear solver wrappers (SciPy backends)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

import numpy as np
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from nlfem.exceptions import ConfigurationError, LinearSolveError


def _check_solution(x: np.ndarray, what: str) -> np.ndarray:
    if not np.all(np.isfinite(x)):
        raise LinearSolveError(f"{what}: solution contains non-finite values (singular matrix?)")
    return x


@dataclass
class DirectSolver:
    """Sparse LU via ``scipy.sparse.linalg.spsolve``."""

    def solve(self, A: sp.spmatrix, b: np.ndarray) -> np.ndarray:
        try:
            x = spla.spsolve(sp.csc_matrix(A), b)
        except (RuntimeError, ValueError) as exc:
            # SuperLU raises RuntimeError("Factor is exactly singular")
            raise LinearSolveError(f"Direct solver failed: {exc}") from exc
        return _check_solution(np.atleast_1d(x), "Direct solver")


@dataclass
class ConjugateGradient:
    tolerance: float = 1e-10
    max_iterations: int = 2000

    def solve(self, A: sp.spmatrix, b: np.ndarray) -> np.ndarray:
        # Jacobi preconditioner
        d = A.diagonal()
        if np.any(d == 0.0):
            raise LinearSolveError("Conjugate gradient: zero on the matrix diagonal")
        M = sp.diags(1.0 / d)
        x, info = spla.cg(A, b, rtol=self.tolerance, maxiter=self.max_iterations, M=M)
        if info != 0:
            raise LinearSolveError(
                f"Conjugate gradient did not converge (info={info}, maxiter={self.max_iterations})"
            )
        return _check_solution(x, "Conjugate gradient")


@dataclass
class LSMR:
    tolerance: float = 1e-10
    max_iterations: int = 2000

    def solve(self, A: sp.spmatrix, b: np.ndarray) -> np.ndarray:
        out = spla.lsmr(A, b, atol=self.tolerance, btol=self.tolerance, maxiter=self.max_iterations)
        x, istop = out[0], out[1]
        if istop == 7:
            raise LinearSolveError(f"LSMR reached maxiter={self.max_iterations} without converging")
        return _check_solution(x, "LSMR")


def make_linear_solver(data: Optional[Mapping[str, Any]] = None):
    """Instantiate the solver named in the ``LinearSolver`` block."""
    data = dict(data or {})
    kind = str(data.get("Type", "Direct")).strip().lower()
    tol = float(data.get("Tolerance", 1e-10))
    maxit = int(data.get("MaxIterations", 2000))

    if kind in ("direct", "spsolve", "superlu"):
        return DirectSolver()
    if kind in ("conjugategradient", "cg", "iterative"):
        return ConjugateGradient(tolerance=tol, max_iterations=maxit)
    if kind == "lsmr":
        return LSMR(tolerance=tol, max_iterations=maxit)

    raise ConfigurationError(f"Unknown LinearSolver Type='{data.get('Type')}'")
