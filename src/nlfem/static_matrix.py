"""Nonlinear static solver (incremental Newton-Raphson).

One load step
-------------
1. prescribe the Dirichlet values at the attempted pseudo-time on ``d``;
2. update the internal variables for the new configuration;
3. iterate: assemble ``K_t`` and ``f_int``, solve the reduced system
   ``K_ff du_f = f_ext - f_int`` for the free dofs, update ``d`` and the
   internal variables, check :class:`~nlfem.convergence.ResidualControl`;
4. on convergence commit the internal variables and advance the load
   stepper; otherwise revert, restore ``d`` and let the stepper cut back.

The sparsity pattern of ``K_t`` is built once from the element dof lists.
Each element block entry maps to a fixed slot of the CSR ``data`` array, so
re-assembly is a single ``bincount`` over the slots in element order
(deterministic, no pattern rebuild).
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np
import scipy.sparse as sp

from nlfem.convergence import ResidualControl
from nlfem.exceptions import ComputationalError
from nlfem.fem.bcs import apply_dirichlet
from nlfem.load_step import AdaptiveLoadStep
from nlfem.solid_mesh import SolidMesh


class StaticMatrix:
    """Newton driver over the load steps of an :class:`AdaptiveLoadStep`."""

    def __init__(
        self,
        mesh: SolidMesh,
        residual_control: ResidualControl,
        load_step: AdaptiveLoadStep,
        linear_solver,
        visualisation=None,
        *,
        max_iterations: int = 15,
        debug_newton: bool = False,
    ):
        self.mesh = mesh
        self.residual_control = residual_control
        self.load_step = load_step
        self.linear_solver = linear_solver
        self.visualisation = visualisation
        self.max_iterations = int(max_iterations)
        self.debug_newton = bool(debug_newton)

        ndof = mesh.active_dofs()
        self.d = np.zeros(ndof, dtype=float)
        self.d_converged = np.zeros(ndof, dtype=float)
        self.fint = np.zeros(ndof, dtype=float)
        self.fext = np.zeros(ndof, dtype=float)

        self.Kt: Optional[sp.csr_matrix] = None
        self._slots = []
        self.is_sparsity_computed = False
        self.sparsity_computations = 0
        self.iterations = 0

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def compute_sparsity_pattern(self) -> None:
        """Build the CSR pattern and the element-entry -> data-slot maps."""
        ndof = self.mesh.active_dofs()
        rows, cols = [], []
        for submesh in self.mesh.submeshes:
            dofs = submesh.dof_list
            n = dofs.shape[1]
            rows.append(np.repeat(dofs, n, axis=1).ravel())
            cols.append(np.tile(dofs, (1, n)).ravel())
        rows = np.concatenate(rows)
        cols = np.concatenate(cols)

        pattern = sp.coo_matrix((np.ones(rows.size), (rows, cols)), shape=(ndof, ndof)).tocsr()
        pattern.sum_duplicates()
        pattern.sort_indices()

        # CSR entries are sorted by (row, col), so the flattened keys are sorted too
        row_of_entry = np.repeat(np.arange(ndof), np.diff(pattern.indptr))
        keys = row_of_entry.astype(np.int64) * ndof + pattern.indices
        self._slots = []
        for submesh in self.mesh.submeshes:
            dofs = submesh.dof_list
            n = dofs.shape[1]
            r = np.repeat(dofs, n, axis=1).astype(np.int64)
            c = np.tile(dofs, (1, n))
            self._slots.append(np.searchsorted(keys, (r * ndof + c).ravel()))

        pattern.data[:] = 0.0
        self.Kt = pattern
        self.is_sparsity_computed = True
        self.sparsity_computations += 1
        if self.debug_newton:
            print(f"    [newton] sparsity pattern: {ndof} dofs, {pattern.nnz} non-zeros")

    def assemble_stiffness(self) -> None:
        if not self.is_sparsity_computed:
            self.compute_sparsity_pattern()
        nnz = self.Kt.data.size
        data = np.zeros(nnz, dtype=float)
        for submesh, slots in zip(self.mesh.submeshes, self._slots):
            _, ke = submesh.all_tangent_stiffness()
            data += np.bincount(slots, weights=ke.ravel(), minlength=nnz)
        self.Kt.data[:] = data

    def compute_internal_force(self) -> None:
        ndof = self.mesh.active_dofs()
        fint = np.zeros(ndof, dtype=float)
        for submesh in self.mesh.submeshes:
            dofs, fe = submesh.all_internal_force()
            fint += np.bincount(dofs.ravel(), weights=fe.ravel(), minlength=ndof)
        self.fint = fint

    def compute_external_force(self, time: float) -> None:
        self.fext = self.mesh.external_force(time)

    # ------------------------------------------------------------------
    # Boundary conditions
    # ------------------------------------------------------------------

    def apply_displacement_boundaries(self, time: float) -> None:
        """Write the prescribed values at ``time`` into ``d``."""
        dofs, values = self.mesh.dirichlet_dofs_and_values(time)
        self.d[dofs] = values

    def enforce_dirichlet_conditions(self, A: sp.csr_matrix, b: np.ndarray):
        """Reduced system for the increment: constrained dofs get a zero increment."""
        return apply_dirichlet(A, b, self.mesh.dirichlet_dofs())

    # ------------------------------------------------------------------
    # Newton iterations
    # ------------------------------------------------------------------

    def update_relative_norms(self, delta_d: np.ndarray, residual: np.ndarray) -> None:
        self.residual_control.update(
            float(np.linalg.norm(self.d)),
            float(np.linalg.norm(delta_d)),
            float(np.linalg.norm(residual)),
            float(np.linalg.norm(self.fext)),
            float(np.linalg.norm(self.fint)),
        )

    def print_convergence_progress(self, iteration: int) -> None:
        print(f"    [newton] it={iteration + 1:02d} {self.residual_control.summary()}")

    def perform_equilibrium_iterations(self) -> bool:
        """Newton iterations for the attempted load step. Returns ``True`` on convergence."""
        time = self.load_step.step_time()
        dt = self.load_step.current_time_step_size()

        self.apply_displacement_boundaries(time)
        self.compute_external_force(time)

        try:
            self.mesh.update_internal_variables(self.d, dt)

            for it in range(self.max_iterations):
                self.iterations = it + 1
                self.assemble_stiffness()
                self.compute_internal_force()

                free, K_ff, rhs = self.enforce_dirichlet_conditions(self.Kt, self.fext - self.fint)
                if it == 0:
                    self.residual_control.set_initial_residual(float(np.linalg.norm(rhs)))

                delta_d = np.zeros_like(self.d)
                delta_d[free] = self.linear_solver.solve(K_ff, rhs)
                self.d += delta_d

                self.mesh.update_internal_variables(self.d, dt)
                self.compute_internal_force()

                residual = (self.fext - self.fint)[free]
                self.update_relative_norms(delta_d, residual)
                if self.debug_newton:
                    self.print_convergence_progress(it)

                if self.residual_control.is_converged():
                    print(f"    [newton] converged in {it + 1} iteration(s): {self.residual_control.summary()}")
                    return True

        except ComputationalError as exc:
            print(f"    [newton] load step at t={time:.6e} failed: {exc}")
            return False

        print(f"    [newton] no convergence after {self.max_iterations} iterations at t={time:.6e}")
        return False

    def solve(self) -> None:
        """Run load steps until the stepper reports the load fully applied."""
        if self.visualisation is not None and self.load_step.step_count == 0:
            self.visualisation.write(0, self.load_step.last_step_time(), self.mesh, self.d)

        while not self.load_step.is_fully_applied():
            print(
                f"  [step] t={self.load_step.step_time():.6e} dt={self.load_step.current_time_step_size():.4e} "
                f"load factor={self.load_step.load_factor():.4f}"
            )

            if self.perform_equilibrium_iterations():
                self.mesh.save_internal_variables(True)
                self.d_converged[:] = self.d
                self.load_step.update_convergence_state(True)
                if self.visualisation is not None:
                    self.visualisation.write(
                        self.load_step.step_count, self.load_step.last_step_time(), self.mesh, self.d
                    )
            else:
                self.mesh.save_internal_variables(False)
                self.d[:] = self.d_converged
                self.mesh.coordinates.update_current_configuration(self.d)
                self.load_step.update_convergence_state(False)

    def internal_restart(
        self,
        boundary_data: Optional[Sequence[Mapping[str, Any]]],
        time_data: Mapping[str, Any],
    ) -> None:
        """Chain a further load case starting from the last converged state."""
        self.mesh.internal_restart(boundary_data)
        increments = time_data.get("Increments") or {}
        self.load_step.reset(
            start=float(time_data.get("Start", self.load_step.last_step_time())),
            end=float(time_data["End"]),
            initial=increments.get("Initial"),
            minimum=increments.get("Minimum"),
            maximum=increments.get("Maximum"),
            mandatory_times=self.mesh.boundary_times(),
        )
