import numpy as np
import pytest

from nlfem.exceptions import ConfigurationError
from nlfem.internal_variables import (
    CAUCHY,
    DEFORMATION_GRADIENT,
    DET_F,
    EFFECTIVE_PLASTIC_STRAIN,
    TANGENT_OPERATOR,
    InternalVariables,
)


def test_fields_have_per_point_shapes():
    v = InternalVariables(5)
    v.add(CAUCHY, DET_F)
    v.add(TANGENT_OPERATOR, value=np.eye(6))

    assert v(CAUCHY).shape == (5, 3, 3)
    assert v(DET_F).shape == (5,)
    assert v(TANGENT_OPERATOR).shape == (5, 6, 6)
    assert np.allclose(v(TANGENT_OPERATOR)[3], np.eye(6))
    assert len(v) == 5


def test_commit_mutate_revert_restores_every_field_exactly():
    rng = np.random.default_rng(0)
    v = InternalVariables(7)
    v.add(DEFORMATION_GRADIENT, value=np.eye(3))
    v.add(CAUCHY, EFFECTIVE_PLASTIC_STRAIN)

    v(CAUCHY)[...] = rng.normal(size=(7, 3, 3))
    v(EFFECTIVE_PLASTIC_STRAIN)[...] = rng.random(7)
    v.commit()
    snapshot = {name: v(name).copy() for name in v.names()}

    for name in v.names():
        v(name)[...] += rng.normal(size=v(name).shape)
    v.revert()

    for name, expected in snapshot.items():
        assert np.array_equal(v(name), expected), f"{name} was not restored by revert()"


def test_views_stay_valid_after_commit_and_revert():
    v = InternalVariables(3)
    v.add(DET_F, value=1.0)
    J = v(DET_F)

    J[...] = 2.0
    v.commit()
    J[...] = 5.0
    v.revert()

    assert np.all(J == 2.0)
    assert np.all(v.committed(DET_F) == 2.0)


def test_committed_view_is_read_only():
    v = InternalVariables(2)
    v.add(DET_F)
    with pytest.raises(ValueError):
        v.committed(DET_F)[0] = 1.0


def test_duplicate_unknown_and_missing_fields_raise():
    v = InternalVariables(2)
    v.add(CAUCHY)

    with pytest.raises(ConfigurationError, match="already been added"):
        v.add(CAUCHY)
    with pytest.raises(ConfigurationError, match="Unknown internal variable"):
        v.add("PurpleMonkey")
    with pytest.raises(ConfigurationError, match="never added"):
        v.get(DET_F)

    assert v.has(CAUCHY)
    assert not v.has(DET_F)
