import numpy as np

from nlfem.constitutive import J2Plasticity
from nlfem.internal_variables import (
    CAUCHY,
    DEFORMATION_GRADIENT,
    DET_F,
    DISPLACEMENT_GRADIENT,
    EFFECTIVE_PLASTIC_STRAIN,
    LINEARISED_PLASTIC_STRAIN,
    TANGENT_OPERATOR,
    VON_MISES_STRESS,
    InternalVariables,
)
from nlfem.material import IsotropicElasticPlastic

MATERIAL = {
    "Name": "steel",
    "ElasticModulus": 200.0e9,
    "PoissonsRatio": 0.3,
    "YieldStress": 250.0e6,
    "IsotropicHardeningModulus": 1.0e9,
}


def _model(n: int, use_numba: bool) -> J2Plasticity:
    v = InternalVariables(n)
    v.add(DEFORMATION_GRADIENT, value=np.eye(3))
    v.add(DISPLACEMENT_GRADIENT, CAUCHY)
    v.add(DET_F, value=1.0)
    return J2Plasticity(v, IsotropicElasticPlastic.from_dict(MATERIAL), use_numba=use_numba)


def test_j2_numba_matches_python_over_two_steps():
    rng = np.random.default_rng(0)
    n = 64
    fast = _model(n, use_numba=True)
    slow = _model(n, use_numba=False)

    for scale in (2.0e-3, 4.0e-3):
        H = rng.normal(scale=scale, size=(n, 3, 3))
        for model in (fast, slow):
            model.variables(DISPLACEMENT_GRADIENT)[...] = H
            model.update_internal_variables(1.0)
            model.variables.commit()

        for name in (CAUCHY, LINEARISED_PLASTIC_STRAIN, EFFECTIVE_PLASTIC_STRAIN, VON_MISES_STRESS, TANGENT_OPERATOR):
            a = fast.variables(name)
            b = slow.variables(name)
            assert np.isfinite(a).all(), f"Numba J2 returned non-finite {name}"
            rel_err = np.linalg.norm(a - b) / max(1.0, np.linalg.norm(b))
            assert rel_err < 1e-10, f"{name} mismatch (rel err={rel_err:.2e})"

    assert np.any(fast.variables(EFFECTIVE_PLASTIC_STRAIN) > 0.0), "no point yielded; test is not exercising the return"
