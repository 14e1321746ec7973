"""Constitutive model factory.

The solid submesh selects its constitutive model from the ``ConstitutiveModel``
block of the input (``Name`` and, for the microsphere family, ``Type``).
This module centralizes that mapping.
"""

from __future__ import annotations

from typing import Any, Mapping

from nlfem.constitutive import AffineMicrosphere, IsotropicLinearElasticity, J2Plasticity
from nlfem.exceptions import ConfigurationError
from nlfem.internal_variables import InternalVariables
from nlfem.material import IsotropicElasticPlastic, IsotropicElasticProperty, MicromechanicalElastomer


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ConfigurationError(f'"{key}" must be true or false (got {value!r})')


def make_constitutive_model(
    variables: InternalVariables,
    material_data: Mapping[str, Any],
    constitutive_data: Mapping[str, Any],
    *,
    points_per_element: int = 0,
    use_numba: bool = True,
):
    """Instantiate the model named in ``constitutive_data['Name']``.

    ``constitutive_data`` may be the ``ConstitutiveModel`` block itself or a
    simulation block that contains it.
    """
    if constitutive_data is None:
        raise ConfigurationError('"ConstitutiveModel" must be specified')
    if "ConstitutiveModel" in constitutive_data:
        constitutive_data = constitutive_data["ConstitutiveModel"]
    elif "Name" not in constitutive_data:
        raise ConfigurationError('"ConstitutiveModel" must be specified')

    if "Name" not in constitutive_data:
        raise ConfigurationError('"ConstitutiveModel" requires a "Name"')

    name = str(constitutive_data["Name"]).strip()
    key = name.lower().replace("_", "").replace("-", "")

    if key in ("isotropiclinearelasticity", "linearelastic", "elastic"):
        material = IsotropicElasticProperty.from_dict(material_data)
        return IsotropicLinearElasticity(variables, material, points_per_element=points_per_element)

    if key in ("j2plasticity", "j2"):
        if _as_bool(constitutive_data.get("FiniteStrain", False), "FiniteStrain"):
            raise ConfigurationError("J2Plasticity with FiniteStrain=true is not supported")
        material = IsotropicElasticPlastic.from_dict(material_data)
        return J2Plasticity(variables, material, use_numba=use_numba, points_per_element=points_per_element)

    if key == "microsphere":
        if "Type" not in constitutive_data:
            raise ConfigurationError('Microsphere model requires a "Type" (Affine)')
        kind = str(constitutive_data["Type"]).strip().lower()
        if kind != "affine":
            raise ConfigurationError(f"Microsphere Type='{constitutive_data['Type']}' is not recognised (Affine)")
        material = MicromechanicalElastomer.from_dict(material_data)
        return AffineMicrosphere(
            variables,
            material,
            quadrature=str(constitutive_data.get("Quadrature", "BO21")),
            points_per_element=points_per_element,
        )

    raise ConfigurationError(f"Unknown ConstitutiveModel Name='{name}'")
