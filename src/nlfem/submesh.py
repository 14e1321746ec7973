"""Solid submesh: element integrals and the constitutive update dispatch.

A submesh is one group of elements sharing topology, quadrature rule and
constitutive model. It owns the :class:`~nlfem.internal_variables.InternalVariables`
store for its quadrature points and shares the nodal coordinate store with
the other submeshes of the mesh.

Element quantities are evaluated for all elements at once with batched
``einsum`` contractions (array shapes below use ``e`` = element, ``q`` =
quadrature point, ``a`` = element node). Single-element accessors
(:meth:`SolidSubmesh.tangent_stiffness`, ...) slice the same code path.

Geometry
--------
* finite-deformation models integrate on the current configuration and add
  the initial-stress (geometric) stiffness ``L^T sigma L dv``;
* small-strain models integrate on the reference configuration.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Tuple

import numpy as np

from nlfem.exceptions import ComputationalError, ConfigurationError
from nlfem.fem.hex8 import Hexahedron8
from nlfem.fem.mesh import NodalCoordinates, check_connectivity, element_dofs
from nlfem.fem.quadrature import HexahedronQuadrature
from nlfem.internal_variables import (
    CAUCHY,
    DEFORMATION_GRADIENT,
    DET_F,
    DISPLACEMENT_GRADIENT,
    TANGENT_OPERATOR,
    InternalVariables,
)
from nlfem.material_factory import make_constitutive_model

I3 = np.eye(3)


def _b_matrix(dNdx: np.ndarray) -> np.ndarray:
    """Symmetric gradient operator, shape ``(..., 6, 3 * nodes)``.

    Rows follow the Voigt order ``[xx, yy, zz, xy, yz, xz]`` (engineering
    shear), columns are node-major ``[u_a, v_a, w_a, ...]``.
    """
    lead = dNdx.shape[:-2]
    nn = dNdx.shape[-2]
    B = np.zeros(lead + (6, 3 * nn), dtype=float)
    dx, dy, dz = dNdx[..., 0], dNdx[..., 1], dNdx[..., 2]
    B[..., 0, 0::3] = dx
    B[..., 1, 1::3] = dy
    B[..., 2, 2::3] = dz
    B[..., 3, 0::3] = dy
    B[..., 3, 1::3] = dx
    B[..., 4, 1::3] = dz
    B[..., 4, 2::3] = dy
    B[..., 5, 0::3] = dz
    B[..., 5, 2::3] = dx
    return B


def _expand_identity(k: np.ndarray) -> np.ndarray:
    """Node-node block ``k[..., a, b]`` -> dof block ``k[a, b] * delta_ij``."""
    lead = k.shape[:-2]
    nn = k.shape[-1]
    return np.einsum("...ab,ij->...aibj", k, I3).reshape(lead + (3 * nn, 3 * nn))


class SolidSubmesh:
    """Element group with a single constitutive model."""

    def __init__(
        self,
        material_data: Mapping[str, Any],
        constitutive_data: Mapping[str, Any],
        coordinates: NodalCoordinates,
        connectivity: np.ndarray,
        *,
        quadrature="Eight",
        topology: str = "hexahedron",
        use_numba: bool = True,
    ):
        if str(topology).lower() not in ("hexahedron", "hexahedron8", "hex8"):
            raise ConfigurationError(f"Element topology '{topology}' is not supported (hexahedron only)")

        self.coordinates = coordinates
        self.connectivity = np.asarray(connectivity, dtype=int)
        self.n_elements, npe = check_connectivity(self.connectivity, coordinates.size)
        if npe != Hexahedron8.nodes_per_element:
            raise ConfigurationError(f"Hexahedron elements need 8 nodes, connectivity has {npe}")

        self.sf = Hexahedron8(HexahedronQuadrature(quadrature))
        self.nqp = self.sf.quadrature.points
        self._topology = "hexahedron"

        self.variables = InternalVariables(self.n_elements * self.nqp)
        self.variables.add(DEFORMATION_GRADIENT, value=I3)
        self.variables.add(DISPLACEMENT_GRADIENT, CAUCHY)
        self.variables.add(DET_F, value=1.0)

        self.cm = make_constitutive_model(
            self.variables,
            material_data,
            constitutive_data,
            points_per_element=self.nqp,
            use_numba=use_numba,
        )

        self.dof_list = element_dofs(self.connectivity)

        # Reference-configuration Jacobians (X . dN) are fixed for the whole run
        X = self.coordinates.initial_configuration(self.connectivity)
        self._F0 = np.einsum("eai,qaj->eqij", X, self.sf.dN)
        det0 = np.linalg.det(self._F0)
        if np.any(det0 <= 0.0):
            e, l = np.argwhere(det0 <= 0.0)[0]
            raise ConfigurationError(
                f"Element {e} has a non-positive reference Jacobian at quadrature point {l} "
                f"(check the node ordering)"
            )
        self._F0_inv = np.linalg.inv(self._F0)
        self._dV0 = det0 * self.sf.quadrature.weights[None, :]
        self._dNdX = np.einsum("qak,eqkj->eqaj", self.sf.dN, self._F0_inv)

    # ------------------------------------------------------------------
    # Mesh collaborator interface
    # ------------------------------------------------------------------

    def connectivities(self) -> np.ndarray:
        return self.connectivity

    def topology(self) -> str:
        return self._topology

    def nodes_per_element(self) -> int:
        return int(self.connectivity.shape[1])

    def elements(self) -> int:
        return self.n_elements

    def constitutive(self):
        return self.cm

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def _spatial_gradients(self, elements) -> Tuple[np.ndarray, np.ndarray]:
        """Return ``dN/dx`` (e, q, a, 3) and ``dv`` (e, q) for the integration configuration."""
        if not self.cm.is_finite_deformation():
            return self._dNdX[elements], self._dV0[elements]

        x = self.coordinates.current_configuration(self.connectivity[elements])
        Jx = np.einsum("eai,qaj->eqij", x, self.sf.dN)
        detJ = np.linalg.det(Jx)
        if np.any(detJ <= 0.0):
            e, l = np.argwhere(detJ <= 0.0)[0]
            raise ComputationalError(
                f"Non-positive element Jacobian in element {np.arange(self.n_elements)[elements][e]}, "
                f"quadrature point {l}"
            )
        dNdx = np.einsum("qak,eqkj->eqaj", self.sf.dN, np.linalg.inv(Jx))
        return dNdx, detJ * self.sf.quadrature.weights[None, :]

    def _points(self, elements) -> np.ndarray:
        """Flat quadrature-point indices for ``elements`` as an (e, q) array."""
        idx = np.arange(self.n_elements * self.nqp).reshape(self.n_elements, self.nqp)
        return idx[elements]

    # ------------------------------------------------------------------
    # Element integrals
    # ------------------------------------------------------------------

    def _stiffness_blocks(self, elements) -> np.ndarray:
        dNdx, dv = self._spatial_gradients(elements)
        pts = self._points(elements)
        D = self.variables(TANGENT_OPERATOR)[pts]

        B = _b_matrix(dNdx)
        ke = np.einsum("eqsi,eqst,eqtj,eq->eij", B, D, B, dv, optimize=True)

        if self.cm.is_finite_deformation():
            sigma = self.variables(CAUCHY)[pts]
            kg = np.einsum("eqai,eqij,eqbj,eq->eab", dNdx, sigma, dNdx, dv, optimize=True)
            ke += _expand_identity(kg)
        return ke

    def _internal_force_blocks(self, elements) -> np.ndarray:
        dNdx, dv = self._spatial_gradients(elements)
        sigma = self.variables(CAUCHY)[self._points(elements)]
        fe = np.einsum("eqij,eqaj,eq->eai", sigma, dNdx, dv, optimize=True)
        return fe.reshape(fe.shape[0], -1)

    def _consistent_mass_blocks(self, elements) -> np.ndarray:
        rho = self.cm.intrinsic_material().initial_density()
        N = self.sf.N
        m = rho * np.einsum("qa,qb,eq->eab", N, N, self._dV0[elements])
        return _expand_identity(m)

    def all_tangent_stiffness(self) -> Tuple[np.ndarray, np.ndarray]:
        """Dof lists (e, 24) and element stiffness matrices (e, 24, 24)."""
        return self.dof_list, self._stiffness_blocks(slice(None))

    def all_internal_force(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.dof_list, self._internal_force_blocks(slice(None))

    def tangent_stiffness(self, element: int) -> Tuple[np.ndarray, np.ndarray]:
        """Element tangent: material part, plus the geometric part for finite deformation."""
        sl = slice(int(element), int(element) + 1)
        return self.dof_list[element], self._stiffness_blocks(sl)[0]

    def internal_force(self, element: int) -> Tuple[np.ndarray, np.ndarray]:
        sl = slice(int(element), int(element) + 1)
        return self.dof_list[element], self._internal_force_blocks(sl)[0]

    def consistent_mass(self, element: int) -> Tuple[np.ndarray, np.ndarray]:
        sl = slice(int(element), int(element) + 1)
        return self.dof_list[element], self._consistent_mass_blocks(sl)[0]

    def diagonal_mass(self, element: int) -> Tuple[np.ndarray, np.ndarray]:
        """Row-sum lumped mass (vector)."""
        dofs, m = self.consistent_mass(element)
        return dofs, m.sum(axis=1)

    def nodal_volumes(self) -> np.ndarray:
        """``int N_a dV`` on the reference configuration, per global node."""
        out = np.zeros(self.coordinates.size, dtype=float)
        ve = np.einsum("qa,eq->ea", self.sf.N, self._dV0)
        np.add.at(out, self.connectivity, ve)
        return out

    # ------------------------------------------------------------------
    # Internal variables
    # ------------------------------------------------------------------

    def update_internal_variables(self, time_step_size: float) -> None:
        X = self.coordinates.initial_configuration(self.connectivity)
        x = self.coordinates.current_configuration(self.connectivity)

        # F = (x . dN) (X . dN)^-1 avoids inverting a possibly singular current map
        Fx = np.einsum("eai,qaj->eqij", x, self.sf.dN)
        F = np.einsum("eqik,eqkj->eqij", Fx, self._F0_inv)
        H = np.einsum("eai,eqaj->eqij", x - X, self._dNdX)
        detF = np.linalg.det(F)

        bad = np.argwhere(~(detF > 0.0))
        if bad.size:
            e, l = (int(v) for v in bad[0])
            raise ComputationalError(
                f"Positive Jacobian assumption violated at element {e} and local quadrature point {l} "
                f"(det F = {detF[e, l]:.6e}); another {bad.shape[0] - 1} violations found"
            )

        F_list, H_list, J_list = self.variables(DEFORMATION_GRADIENT, DISPLACEMENT_GRADIENT, DET_F)
        F_list[...] = F.reshape(-1, 3, 3)
        H_list[...] = H.reshape(-1, 3, 3)
        J_list[...] = detF.reshape(-1)

        try:
            with np.errstate(invalid="raise", over="raise", divide="raise"):
                self.cm.update_internal_variables(float(time_step_size))
        except FloatingPointError as exc:
            # the update restarts from the committed state; repeat it masked to find the point
            with np.errstate(all="ignore"):
                self.cm.update_internal_variables(float(time_step_size))
            where = self._first_non_finite()
            at = "" if where is None else f" at element {where[1]}, quadrature point {where[2]}"
            raise ComputationalError(f"Floating point error during the constitutive update{at}: {exc}") from exc

        where = self._first_non_finite()
        if where is not None:
            name, e, l = where
            raise ComputationalError(f"Non-finite {name} at element {e}, quadrature point {l}")

    def _first_non_finite(self) -> Optional[Tuple[str, int, int]]:
        for name in (CAUCHY, TANGENT_OPERATOR):
            values = self.variables(name)
            finite = np.isfinite(values.reshape(values.shape[0], -1)).all(axis=1)
            if not finite.all():
                i = int(np.flatnonzero(~finite)[0])
                return name, i // self.nqp, i % self.nqp
        return None

    def save_internal_variables(self, have_converged: bool) -> None:
        if have_converged:
            self.variables.commit()
        else:
            self.variables.revert()

    def nodal_sums(self, name: str) -> Tuple[np.ndarray, np.ndarray]:
        """Extrapolated quadrature values summed at nodes, plus the contribution count."""
        values = self.variables(name)
        per_point = values.reshape(self.n_elements, self.nqp, -1)

        E = self.sf.local_quadrature_extrapolation()
        nodal_e = np.einsum("aq,eqk->eak", E, per_point)

        n = self.coordinates.size
        acc = np.zeros((n, per_point.shape[-1]), dtype=float)
        count = np.zeros(n, dtype=float)
        np.add.at(acc, self.connectivity, nodal_e)
        np.add.at(count, self.connectivity, 1.0)
        return acc, count

    def nodal_averaged_variable(self, name: str) -> np.ndarray:
        """Quadrature values extrapolated to nodes and averaged at shared nodes.

        Returns ``(n_nodes,)`` for scalars and ``(n_nodes, k)`` for tensors
        (flattened row-major).
        """
        acc, count = self.nodal_sums(name)
        used = count > 0
        acc[used] /= count[used, None]
        return acc[:, 0] if self.variables(name).ndim == 1 else acc
