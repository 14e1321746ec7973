"""Constitutive models for 3D solids.

Each model owns its intrinsic material bundle and writes its results straight
into the shared :class:`~nlfem.internal_variables.InternalVariables` store of
its submesh. The submesh fills the kinematic fields (``DeformationGradient``,
``DisplacementGradient``, ``DetF``) before calling
``update_internal_variables(dt)``; the model then overwrites stress and
tangent for every quadrature point in place.

Voigt ordering is ``[xx, yy, zz, xy, yz, xz]`` with **engineering** shear
strains and **tensor** shear stresses, so the 6x6 tangent maps an engineering
strain vector to a stress vector.

Models
------
* :class:`IsotropicLinearElasticity` - small strain, closed-form tangent.
* :class:`J2Plasticity` - small strain, isotropic linear hardening, radial
  return with the consistent (algorithmic) tangent. The per-point update has
  a NumPy reference implementation and a Numba ``prange`` kernel.
* :class:`AffineMicrosphere` - finite strain, chain network averaged over a
  unit-sphere rule with a Pade approximation of the inverse Langevin
  function, plus a volumetric penalty energy.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Protocol, Tuple

import numpy as np

from nlfem.exceptions import ComputationalError, ConfigurationError
from nlfem.fem.quadrature import UnitSphereQuadrature
from nlfem.internal_variables import (
    CAUCHY,
    CHAINS,
    DEFORMATION_GRADIENT,
    DET_F,
    DISPLACEMENT_GRADIENT,
    EFFECTIVE_PLASTIC_STRAIN,
    KIRCHHOFF,
    LINEARISED_PLASTIC_STRAIN,
    LINEARISED_STRAIN,
    SHEAR_MODULUS,
    TANGENT_OPERATOR,
    VON_MISES_STRESS,
    InternalVariables,
)
from nlfem.material import IsotropicElasticPlastic, IsotropicElasticProperty, MicromechanicalElastomer
from nlfem.numba.kernels_j2 import j2_update_points


# ----------------------------
# Utilities (Voigt <-> tensor)
# ----------------------------

VOIGT_PAIRS = ((0, 0), (1, 1), (2, 2), (0, 1), (1, 2), (0, 2))
_VI = np.array([p[0] for p in VOIGT_PAIRS])
_VJ = np.array([p[1] for p in VOIGT_PAIRS])

I3 = np.eye(3)
# Symmetric fourth-order identity, I (x) I and the deviatoric projector
II_SYM = 0.5 * (np.einsum("ik,jl->ijkl", I3, I3) + np.einsum("il,jk->ijkl", I3, I3))
I_O_I = np.einsum("ij,kl->ijkl", I3, I3)
P_DEV = II_SYM - I_O_I / 3.0


def _strain6_to_tensor(eps6: np.ndarray) -> np.ndarray:
    """Engineering-strain Voigt6 -> symmetric strain tensor (any leading shape)."""
    e = np.asarray(eps6, dtype=float)
    E = np.empty(e.shape[:-1] + (3, 3), dtype=float)
    E[..., 0, 0] = e[..., 0]
    E[..., 1, 1] = e[..., 1]
    E[..., 2, 2] = e[..., 2]
    E[..., 0, 1] = E[..., 1, 0] = 0.5 * e[..., 3]
    E[..., 1, 2] = E[..., 2, 1] = 0.5 * e[..., 4]
    E[..., 0, 2] = E[..., 2, 0] = 0.5 * e[..., 5]
    return E


def _tensor_to_strain6(E: np.ndarray) -> np.ndarray:
    """Symmetric strain tensor -> engineering-strain Voigt6."""
    E = np.asarray(E, dtype=float)
    e = E[..., _VI, _VJ].copy()
    e[..., 3:] *= 2.0
    return e


def _stress6_to_tensor(sig6: np.ndarray) -> np.ndarray:
    """Stress Voigt6 -> symmetric stress tensor (no factor for shear)."""
    s = np.asarray(sig6, dtype=float)
    S = np.empty(s.shape[:-1] + (3, 3), dtype=float)
    for a, (i, j) in enumerate(VOIGT_PAIRS):
        S[..., i, j] = s[..., a]
        S[..., j, i] = s[..., a]
    return S


def _tensor_to_stress6(S: np.ndarray) -> np.ndarray:
    """Symmetric stress tensor -> stress Voigt6."""
    return np.asarray(S, dtype=float)[..., _VI, _VJ].copy()


def _fourth_order_to_voigt(C: np.ndarray) -> np.ndarray:
    """Minor-symmetric ``C_ijkl`` -> 6x6 acting on engineering strains."""
    C = np.asarray(C, dtype=float)
    return C[..., _VI[:, None], _VJ[:, None], _VI[None, :], _VJ[None, :]]


def _Ce6_iso(lam: float, mu: float) -> np.ndarray:
    """3D isotropic stiffness in engineering-strain Voigt6."""
    C = np.zeros((6, 6), dtype=float)
    C[:3, :3] = lam
    C[0, 0] = C[1, 1] = C[2, 2] = lam + 2.0 * mu
    C[3, 3] = C[4, 4] = C[5, 5] = mu
    return C


def deviatoric(A: np.ndarray) -> np.ndarray:
    A = np.asarray(A, dtype=float)
    tr = np.trace(A, axis1=-2, axis2=-1)
    return A - (tr / 3.0)[..., None, None] * I3


def von_mises_stress(sigma: np.ndarray) -> np.ndarray:
    s = deviatoric(sigma)
    return np.sqrt(1.5 * np.sum(s * s, axis=(-2, -1)))


# ----------------------------
# Protocol
# ----------------------------


class ConstitutiveModel(Protocol):
    variables: InternalVariables

    def update_internal_variables(self, time_step_size: float) -> None:
        """Overwrite stress and tangent for every quadrature point."""

    def intrinsic_material(self) -> IsotropicElasticProperty: ...

    def is_finite_deformation(self) -> bool: ...

    def is_symmetric(self) -> bool: ...


def _require_fields(variables: InternalVariables, model: str, *names: str) -> None:
    missing = [n for n in names if not variables.has(n)]
    if missing:
        raise ConfigurationError(
            f"{model} requires the kinematic variables {missing} to be added before construction"
        )


def _point_label(index: int, points_per_element: int) -> str:
    if points_per_element > 0:
        return f"element {index // points_per_element}, quadrature point {index % points_per_element}"
    return f"quadrature point {index}"


# ----------------------------
# Isotropic linear elasticity
# ----------------------------


@dataclass
class IsotropicLinearElasticity:
    """``sigma = lambda tr(eps) I + 2 G eps`` with ``eps = sym(H)``."""

    variables: InternalVariables
    material: IsotropicElasticProperty
    points_per_element: int = 0

    def __post_init__(self) -> None:
        _require_fields(self.variables, type(self).__name__, DISPLACEMENT_GRADIENT, CAUCHY)
        lam, mu = self.material.lame_parameters()
        self.C = _Ce6_iso(lam, mu)
        self.variables.add(LINEARISED_STRAIN, VON_MISES_STRESS)
        self.variables.add(TANGENT_OPERATOR, value=self.C)

    def intrinsic_material(self) -> IsotropicElasticProperty:
        return self.material

    def is_finite_deformation(self) -> bool:
        return False

    def is_symmetric(self) -> bool:
        return True

    def elastic_moduli(self) -> np.ndarray:
        return self.C.copy()

    def update_internal_variables(self, time_step_size: float) -> None:
        H, eps, sigma, vm = self.variables(DISPLACEMENT_GRADIENT, LINEARISED_STRAIN, CAUCHY, VON_MISES_STRESS)
        lam, mu = self.material.lame_parameters()

        eps[...] = 0.5 * (H + np.swapaxes(H, -1, -2))
        tr = np.trace(eps, axis1=-2, axis2=-1)
        sigma[...] = lam * tr[:, None, None] * I3 + 2.0 * mu * eps
        vm[...] = von_mises_stress(sigma)


# -------------------------------------
# J2 plasticity (small strain)
# -------------------------------------


def _j2_return_mapping(
    strain: np.ndarray,
    plastic_strain_old: np.ndarray,
    ep_old: float,
    lam: float,
    mu: float,
    sigma_y0: float,
    H: float,
    tol: float,
    max_iterations: int,
):
    """Radial return at one point (tensor form).

    Returns ``(sigma, plastic_strain, ep, von_mises, D6, converged)``.
    The point is elastic when the trial yield function is not positive.
    ``tol`` is only the absolute stopping tolerance of the local iteration.
    """
    C_e = _Ce6_iso(lam, mu)
    eps_e = np.asarray(strain, dtype=float) - plastic_strain_old
    sig_tr = lam * np.trace(eps_e) * I3 + 2.0 * mu * eps_e

    s_tr = deviatoric(sig_tr)
    norm_s = float(np.sqrt(np.sum(s_tr * s_tr)))
    vm_tr = math.sqrt(1.5) * norm_s

    f = vm_tr - (sigma_y0 + H * ep_old)
    if f <= 0.0:
        return sig_tr, np.array(plastic_strain_old, copy=True), float(ep_old), vm_tr, C_e, True

    n = s_tr / norm_s
    dgamma = 0.0
    for _ in range(max_iterations):
        dgamma += f / (3.0 * mu + H)
        f = vm_tr - 3.0 * mu * dgamma - (sigma_y0 + H * (ep_old + dgamma))
        if abs(f) <= tol:
            break
    else:
        return sig_tr, np.array(plastic_strain_old, copy=True), float(ep_old), vm_tr, C_e, False

    plastic_strain = plastic_strain_old + math.sqrt(1.5) * dgamma * n
    sigma = sig_tr - 2.0 * mu * math.sqrt(1.5) * dgamma * n
    vm = float(von_mises_stress(sigma))

    n6 = _tensor_to_stress6(n)
    D = (
        C_e
        - dgamma * 6.0 * mu * mu / vm_tr * _fourth_order_to_voigt(P_DEV)
        + 6.0 * mu * mu * (dgamma / vm_tr - 1.0 / (3.0 * mu + H)) * np.outer(n6, n6)
    )
    return sigma, plastic_strain, float(ep_old + dgamma), vm, D, True


@dataclass
class J2Plasticity:
    """Small-strain von Mises plasticity with linear isotropic hardening.

    The trial state is always built from the *committed* plastic strain, so
    repeated global Newton iterations within one load step do not accumulate
    plastic flow.

    ``yield_tolerance`` is relative to the initial yield stress.
    """

    variables: InternalVariables
    material: IsotropicElasticPlastic
    use_numba: bool = True
    max_iterations: int = 50
    yield_tolerance: float = 1e-6
    points_per_element: int = 0

    def __post_init__(self) -> None:
        _require_fields(self.variables, type(self).__name__, DISPLACEMENT_GRADIENT, CAUCHY)
        lam, mu = self.material.lame_parameters()
        self.C = _Ce6_iso(lam, mu)
        self.I_dev6 = _fourth_order_to_voigt(P_DEV)
        self.variables.add(
            LINEARISED_STRAIN,
            LINEARISED_PLASTIC_STRAIN,
            VON_MISES_STRESS,
            EFFECTIVE_PLASTIC_STRAIN,
        )
        self.variables.add(TANGENT_OPERATOR, value=self.C)

    def intrinsic_material(self) -> IsotropicElasticPlastic:
        return self.material

    def is_finite_deformation(self) -> bool:
        return False

    def is_symmetric(self) -> bool:
        return True

    def update_internal_variables(self, time_step_size: float) -> None:
        v = self.variables
        H_grad, eps, eps_p, sigma, vm, ep, D = v(
            DISPLACEMENT_GRADIENT,
            LINEARISED_STRAIN,
            LINEARISED_PLASTIC_STRAIN,
            CAUCHY,
            VON_MISES_STRESS,
            EFFECTIVE_PLASTIC_STRAIN,
            TANGENT_OPERATOR,
        )
        eps_p_old = v.committed(LINEARISED_PLASTIC_STRAIN)
        ep_old = v.committed(EFFECTIVE_PLASTIC_STRAIN)

        eps[...] = 0.5 * (H_grad + np.swapaxes(H_grad, -1, -2))

        lam, mu = self.material.lame_parameters()
        sy0 = float(self.material.yield_stress_0)
        Hmod = float(self.material.hardening_modulus())
        tol = float(self.yield_tolerance) * max(1.0, sy0)

        if self.use_numba:
            n = v.size
            sig6 = np.empty((n, 6))
            eps_p6 = np.empty((n, 6))
            status = np.zeros(n, dtype=np.int64)
            j2_update_points(
                _tensor_to_strain6(eps),
                _tensor_to_strain6(eps_p_old),
                np.array(ep_old, dtype=np.float64),
                self.C,
                self.I_dev6,
                float(mu),
                sy0,
                Hmod,
                tol,
                int(self.max_iterations),
                sig6,
                eps_p6,
                ep,
                vm,
                D,
                status,
            )
            failed = np.flatnonzero(status)
            if failed.size:
                self._raise_not_converged(failed)
            sigma[...] = _stress6_to_tensor(sig6)
            eps_p[...] = _strain6_to_tensor(eps_p6)
            return

        for i in range(v.size):
            out = _j2_return_mapping(eps[i], eps_p_old[i], float(ep_old[i]), lam, mu, sy0, Hmod, tol,
                                     int(self.max_iterations))
            if not out[5]:
                self._raise_not_converged(np.array([i]))
            sigma[i], eps_p[i], ep[i], vm[i], D[i] = out[:5]

    def _raise_not_converged(self, failed: np.ndarray) -> None:
        i = int(failed[0])
        raise ComputationalError(
            f"J2 radial return did not converge within {self.max_iterations} iterations at "
            f"{_point_label(i, self.points_per_element)} ({failed.size - 1} other point(s) failed)"
        )


# -------------------------------------
# Affine microsphere (finite strain)
# -------------------------------------


def pade_first(lambda_sq: np.ndarray, N: float) -> np.ndarray:
    """Pade approximation of the chain force factor ``(3N - l^2) / (N - l^2)``."""
    return (3.0 * N - lambda_sq) / (N - lambda_sq)


def pade_second(lambda_sq: np.ndarray, N: float) -> np.ndarray:
    """Companion term ``(l^4 + 3N^2) / (N - l^2)^2`` of the moduli integrand."""
    return (lambda_sq * lambda_sq + 3.0 * N * N) / (N - lambda_sq) ** 2


def volumetric_free_energy_dJ(J: np.ndarray, K: float) -> np.ndarray:
    """``U'(J)`` for ``U = K/4 (J^2 - 1) - K/2 ln J``."""
    return 0.5 * K * (J - 1.0 / J)


def volumetric_free_energy_d2J(J: np.ndarray, K: float) -> np.ndarray:
    return 0.5 * K * (1.0 + 1.0 / (J * J))


@dataclass
class AffineMicrosphere:
    """Affine microsphere network model (Miehe et al. 2004, affine limit).

    Chains are assumed to stretch with the unimodular part of ``F``; the
    deviatoric Kirchhoff stress and moduli are averaged over the
    directions of :class:`~nlfem.fem.quadrature.UnitSphereQuadrature`.
    With ``ChainDecayRate > 0`` the chain density decays as
    ``n <- n / (1 + rate * dt)`` from its last converged value.
    """

    variables: InternalVariables
    material: MicromechanicalElastomer
    quadrature: str = "BO21"
    points_per_element: int = 0
    unit_sphere: UnitSphereQuadrature = field(init=False, repr=False)

    def __post_init__(self) -> None:
        _require_fields(self.variables, type(self).__name__, DEFORMATION_GRADIENT, DET_F, CAUCHY)
        self.unit_sphere = UnitSphereQuadrature(self.quadrature)
        lam, mu = self.material.lame_parameters()
        self.variables.add(KIRCHHOFF)
        self.variables.add(TANGENT_OPERATOR, value=_Ce6_iso(lam, mu))
        self.variables.add(CHAINS, value=self.material.number_of_chains)
        self.variables.add(SHEAR_MODULUS, value=self.material.shear_modulus)

    def intrinsic_material(self) -> MicromechanicalElastomer:
        return self.material

    def is_finite_deformation(self) -> bool:
        return True

    def is_symmetric(self) -> bool:
        return True

    def update_internal_variables(self, time_step_size: float) -> None:
        v = self.variables
        F, J_list, cauchy, kirchhoff, D, chains, shear = v(
            DEFORMATION_GRADIENT, DET_F, CAUCHY, KIRCHHOFF, TANGENT_OPERATOR, CHAINS, SHEAR_MODULUS
        )
        N = float(self.material.segments_per_chain)
        K = float(self.material.bulk_modulus)

        if self.material.chain_decay_rate > 0.0:
            chains[...] = self.material.update_chains(v.committed(CHAINS), float(time_step_size))
            shear[...] = self.material.shear_modulus_from_chains(chains)

        J = np.linalg.det(F)
        J_list[...] = J

        F_bar = F * (J ** (-1.0 / 3.0))[:, None, None]
        r = self.unit_sphere.coordinates
        w = self.unit_sphere.weights

        t = np.einsum("nij,qj->nqi", F_bar, r)
        lambda_sq = np.sum(t * t, axis=-1)

        locked = np.argwhere(lambda_sq >= N)
        if locked.size:
            i = int(locked[0, 0])
            raise ComputationalError(
                f"Chain stretch reached the locking limit (lambda^2 >= N={N:g}) at "
                f"{_point_label(i, self.points_per_element)}"
            )

        psi_1 = pade_first(lambda_sq, N)
        psi_2 = pade_second(lambda_sq, N)

        tau_bar = shear[:, None, None] * np.einsum("q,nq,nqi,nqj->nij", w, psi_1, t, t)
        C_bar = shear[:, None, None, None, None] * np.einsum(
            "q,nq,nqi,nqj,nqk,nql->nijkl", w, (psi_2 - psi_1) / lambda_sq, t, t, t, t, optimize=True
        )

        p = J * volumetric_free_energy_dJ(J, K)
        kappa = J * J * volumetric_free_energy_d2J(J, K)

        tau_dev = deviatoric(tau_bar)
        kirchhoff[...] = p[:, None, None] * I3 + tau_dev

        # dev(tau) (x) I coupling sits outside the projection since P : I = 0
        tr_tau = np.trace(tau_bar, axis1=-2, axis2=-1)
        inner = C_bar + (2.0 / 3.0) * tr_tau[:, None, None, None, None] * II_SYM
        c_iso = np.einsum("ijab,nabcd,cdkl->nijkl", P_DEV, inner, P_DEV, optimize=True) - (2.0 / 3.0) * (
            np.einsum("nij,kl->nijkl", tau_dev, I3) + np.einsum("ij,nkl->nijkl", I3, tau_dev)
        )
        c_tau = (kappa + p)[:, None, None, None, None] * I_O_I - 2.0 * p[:, None, None, None, None] * II_SYM + c_iso

        cauchy[...] = kirchhoff / J[:, None, None]
        D[...] = _fourth_order_to_voigt(c_tau) / J[:, None, None]
