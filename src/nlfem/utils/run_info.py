"""Progress header and material summary lines for a run."""

from __future__ import annotations

import platform
from datetime import datetime
from zoneinfo import ZoneInfo

import numba
import numpy as np
import scipy

from nlfem.constitutive import AffineMicrosphere, J2Plasticity

_SI_PREFIXES = ((1e9, "GPa"), (1e6, "MPa"), (1e3, "kPa"))


def _fmt_pa(value: float) -> str:
    value = float(value)
    for scale, unit in _SI_PREFIXES:
        if abs(value) >= scale:
            return f"{value / scale:.3g} {unit}"
    return f"{value:.3g} Pa"


def print_run_header(name: str) -> None:
    """``[run]`` line with the simulation name, a timestamp and library versions."""
    # Timestamps are always reported in Europe/Berlin time
    stamp = datetime.now(ZoneInfo("Europe/Berlin")).strftime("%Y-%m-%d %H:%M:%S %Z")
    print(f"\n[run] {name}  start={stamp}")
    print(
        f"[run] python={platform.python_version()}  numpy={np.__version__}  "
        f"scipy={scipy.__version__}  numba={numba.__version__}"
    )


def print_material_summary(model) -> None:
    """One or two ``[material]`` lines for a constitutive model, then the ``[numba]`` line."""
    mat = model.intrinsic_material()
    kind = type(model).__name__
    print(
        f"[material] ({kind}) {mat.name}: E={_fmt_pa(mat.elastic_modulus)}  nu={mat.poissons_ratio:.3g}"
        f"  K={_fmt_pa(mat.bulk_modulus)}  G={_fmt_pa(mat.shear_modulus)}"
    )

    if isinstance(model, J2Plasticity):
        print(f"[material] sigma_y0={_fmt_pa(mat.yield_stress_0)}  H={_fmt_pa(mat.isotropic_hardening_modulus)}")
        on = bool(model.use_numba)
        print(f"[numba] version={numba.__version__}  j2_kernels={'yes' if on else 'no'}")
        return

    if isinstance(model, AffineMicrosphere):
        print(
            f"[material] N={mat.segments_per_chain:.4g}  chain decay={mat.chain_decay_rate:.3g} 1/s"
            f"  T={mat.temperature:.4g} K  quadrature={model.quadrature}"
        )
