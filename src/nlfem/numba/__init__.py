"""Numba-accelerated kernels.

Small, *stateless* kernels compiled in ``nopython`` mode. The constitutive
models call them on whole arrays of quadrature points; a pure NumPy
reference path stays available (``use_numba=False``) for debugging and
parity tests.
"""

from .kernels_j2 import j2_return_mapping_point, j2_update_points

__all__ = ["j2_return_mapping_point", "j2_update_points"]
