"""Numba kernels for the J2 (von Mises) radial return.

The kernels are **stateless** and operate on primitive NumPy arrays so they
compile in ``nopython`` mode. The outer loop over quadrature points is a
``prange``: points are independent and every iteration writes only its own
row of the output arrays.

Conventions
-----------
* Strains (total and plastic) are engineering-strain Voigt6
  ``[xx, yy, zz, gxy, gyz, gxz]``; stresses are Voigt6 with tensor shear.
* ``status_out[i]`` is 0 on success and 1 when the local Newton iteration
  hit ``max_iter``; the caller turns that into an exception (no raising
  inside parallel regions).
"""

from __future__ import annotations

import math

import numpy as np
from numba import njit, prange


@njit(cache=True)
def _voigt6_dot(a: np.ndarray, b: np.ndarray) -> float:
    """Double contraction of two stress-like Voigt6 vectors (tensor shear)."""
    return (
        a[0] * b[0]
        + a[1] * b[1]
        + a[2] * b[2]
        + 2.0 * (a[3] * b[3] + a[4] * b[4] + a[5] * b[5])
    )


@njit(cache=True)
def _deviator6(s: np.ndarray) -> np.ndarray:
    out = s.copy()
    p = (s[0] + s[1] + s[2]) / 3.0
    out[0] -= p
    out[1] -= p
    out[2] -= p
    return out


@njit(cache=True)
def j2_return_mapping_point(
    strain6: np.ndarray,
    eps_p6_old: np.ndarray,
    ep_old: float,
    Ce6: np.ndarray,
    Idev6: np.ndarray,
    mu: float,
    sigma_y0: float,
    H: float,
    tol: float,
    max_iter: int,
    sig6: np.ndarray,
    eps_p6: np.ndarray,
    D: np.ndarray,
):
    """Single-point update. Returns ``(ep, von_mises, status)``."""
    eps_e = strain6 - eps_p6_old
    sig_tr = Ce6 @ eps_e
    s_tr = _deviator6(sig_tr)
    norm_s = math.sqrt(_voigt6_dot(s_tr, s_tr))
    vm_tr = math.sqrt(1.5) * norm_s

    f = vm_tr - (sigma_y0 + H * ep_old)
    if f <= 0.0:
        sig6[:] = sig_tr
        eps_p6[:] = eps_p6_old
        D[:, :] = Ce6
        return ep_old, vm_tr, 0

    dgamma = 0.0
    converged = False
    for _ in range(max_iter):
        dgamma += f / (3.0 * mu + H)
        f = vm_tr - 3.0 * mu * dgamma - (sigma_y0 + H * (ep_old + dgamma))
        if abs(f) <= tol:
            converged = True
            break
    if not converged:
        sig6[:] = sig_tr
        eps_p6[:] = eps_p6_old
        D[:, :] = Ce6
        return ep_old, vm_tr, 1

    n = s_tr / norm_s
    c = math.sqrt(1.5) * dgamma
    for a in range(6):
        sig6[a] = sig_tr[a] - 2.0 * mu * c * n[a]
        # engineering shear for the plastic strain
        scale = 1.0 if a < 3 else 2.0
        eps_p6[a] = eps_p6_old[a] + scale * c * n[a]

    s_new = _deviator6(sig6)
    vm = math.sqrt(1.5 * _voigt6_dot(s_new, s_new))

    c1 = dgamma * 6.0 * mu * mu / vm_tr
    c2 = 6.0 * mu * mu * (dgamma / vm_tr - 1.0 / (3.0 * mu + H))
    for a in range(6):
        for b in range(6):
            D[a, b] = Ce6[a, b] - c1 * Idev6[a, b] + c2 * n[a] * n[b]

    return ep_old + dgamma, vm, 0


@njit(parallel=True, cache=True)
def j2_update_points(
    strain6: np.ndarray,
    eps_p6_old: np.ndarray,
    ep_old: np.ndarray,
    Ce6: np.ndarray,
    Idev6: np.ndarray,
    mu: float,
    sigma_y0: float,
    H: float,
    tol: float,
    max_iter: int,
    sig6_out: np.ndarray,
    eps_p6_out: np.ndarray,
    ep_out: np.ndarray,
    vm_out: np.ndarray,
    D_out: np.ndarray,
    status_out: np.ndarray,
) -> None:
    """Radial return over all points (parallel over the leading axis)."""
    n = strain6.shape[0]
    for i in prange(n):
        ep, vm, st = j2_return_mapping_point(
            strain6[i],
            eps_p6_old[i],
            ep_old[i],
            Ce6,
            Idev6,
            mu,
            sigma_y0,
            H,
            tol,
            max_iter,
            sig6_out[i],
            eps_p6_out[i],
            D_out[i],
        )
        ep_out[i] = ep
        vm_out[i] = vm
        status_out[i] = st
