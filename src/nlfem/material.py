"""Intrinsic material parameter bundles.

Bundles are immutable after construction and are built from the ``Material``
block of the input document (keys as in the input files, e.g.
``ElasticModulus``, ``PoissonsRatio``, ``YieldStress``). Missing required keys
raise :class:`~nlfem.exceptions.ConfigurationError` immediately.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from nlfem.exceptions import ConfigurationError

BOLTZMANN_CONSTANT = 1.38064852e-23  # J/K
DEFAULT_TEMPERATURE = 298.0  # K


def _require(data: Mapping[str, Any], key: str, what: str = "Material") -> float:
    if key not in data or data[key] is None:
        raise ConfigurationError(f'"{key}" is not specified in "{what}" data')
    try:
        return float(data[key])
    except (TypeError, ValueError):
        raise ConfigurationError(f'"{key}" in "{what}" data must be a number (got {data[key]!r})') from None


def _optional(data: Mapping[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    if key not in data or data[key] is None:
        return default
    return _require(data, key)


def _elastic_kwargs(data: Mapping[str, Any]) -> Dict[str, Any]:
    if "Name" not in data or not str(data["Name"]).strip():
        raise ConfigurationError('"Name" must be specified for a material')

    if "ElasticModulus" in data or "PoissonsRatio" in data:
        E = _require(data, "ElasticModulus")
        nu = _require(data, "PoissonsRatio")
        if E <= 0.0:
            raise ConfigurationError(f"ElasticModulus must be positive (got {E})")
        if not (-1.0 < nu < 0.5):
            raise ConfigurationError(f"PoissonsRatio must lie in (-1, 0.5) (got {nu})")
        mu = E / (2.0 * (1.0 + nu))
        lam = E * nu / ((1.0 + nu) * (1.0 - 2.0 * nu))
    elif "BulkModulus" in data or "ShearModulus" in data:
        K = _require(data, "BulkModulus")
        mu = _require(data, "ShearModulus")
        if K <= 0.0 or mu <= 0.0:
            raise ConfigurationError(f"BulkModulus and ShearModulus must be positive (got K={K}, G={mu})")
        lam = K - 2.0 * mu / 3.0
    else:
        raise ConfigurationError(
            'Elastic constants missing: provide "ElasticModulus" and "PoissonsRatio" '
            'or "BulkModulus" and "ShearModulus"'
        )

    return dict(
        name=str(data["Name"]),
        lambda_=float(lam),
        shear_modulus=float(mu),
        density=_optional(data, "Density", None),
    )


@dataclass(frozen=True)
class IsotropicElasticProperty:
    name: str
    lambda_: float
    shear_modulus: float
    density: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IsotropicElasticProperty":
        return cls(**_elastic_kwargs(data))

    @property
    def bulk_modulus(self) -> float:
        return self.lambda_ + 2.0 * self.shear_modulus / 3.0

    @property
    def elastic_modulus(self) -> float:
        mu, lam = self.shear_modulus, self.lambda_
        return mu * (3.0 * lam + 2.0 * mu) / (lam + mu)

    @property
    def poissons_ratio(self) -> float:
        return self.lambda_ / (2.0 * (self.lambda_ + self.shear_modulus))

    def lame_parameters(self):
        """Return ``(lambda, mu)``."""
        return self.lambda_, self.shear_modulus

    def initial_density(self) -> float:
        if self.density is None:
            raise ConfigurationError("Density was requested, but not specified in the input file")
        return float(self.density)


@dataclass(frozen=True)
class IsotropicElasticPlastic(IsotropicElasticProperty):
    """Elastic constants plus a linear isotropic hardening law."""

    yield_stress_0: float = 0.0
    isotropic_hardening_modulus: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IsotropicElasticPlastic":
        kw = _elastic_kwargs(data)
        sy = _require(data, "YieldStress")
        H = _optional(data, "IsotropicHardeningModulus", 0.0)
        if sy <= 0.0:
            raise ConfigurationError(f"YieldStress must be positive (got {sy})")
        if H < 0.0:
            raise ConfigurationError(f"IsotropicHardeningModulus must be non-negative (got {H})")
        return cls(yield_stress_0=sy, isotropic_hardening_modulus=H, **kw)

    def yield_stress(self, effective_strain: float) -> float:
        return self.yield_stress_0 + effective_strain * self.isotropic_hardening_modulus

    def hardening_modulus(self, effective_strain: float = 0.0) -> float:
        return self.isotropic_hardening_modulus


@dataclass(frozen=True)
class MicromechanicalElastomer(IsotropicElasticProperty):
    """Entropy-elastic network described by chain statistics.

    The shear modulus of the network is ``n * k_B * T`` with ``n`` the number
    of chains per unit volume; ``n`` is back-computed from the input shear
    modulus.
    """

    segments_per_chain: float = 0.0
    chain_decay_rate: float = 0.0
    temperature: float = DEFAULT_TEMPERATURE

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MicromechanicalElastomer":
        kw = _elastic_kwargs(data)
        N = _require(data, "SegmentsPerChain")
        decay = _optional(data, "ChainDecayRate", 0.0)
        T = _optional(data, "Temperature", DEFAULT_TEMPERATURE)
        if N <= 1.0:
            raise ConfigurationError(f"SegmentsPerChain must be greater than one (got {N})")
        if decay < 0.0:
            raise ConfigurationError(f"ChainDecayRate must be non-negative (got {decay})")
        if T <= 0.0:
            raise ConfigurationError(f"Temperature must be positive (got {T})")
        return cls(segments_per_chain=N, chain_decay_rate=decay, temperature=T, **kw)

    @property
    def number_of_chains(self) -> float:
        return self.shear_modulus / (BOLTZMANN_CONSTANT * self.temperature)

    def update_chains(self, chains, time_step_size: float):
        return chains / (1.0 + self.chain_decay_rate * time_step_size)

    def shear_modulus_from_chains(self, chains):
        return chains * BOLTZMANN_CONSTANT * self.temperature
