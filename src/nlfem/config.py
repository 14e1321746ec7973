"""Input document parsing.

The input is a YAML (or JSON, which YAML reads as well) key/value tree::

    Material: {Name: steel, ElasticModulus: 200.0e9, PoissonsRatio: 0.3}
    ConstitutiveModel: {Name: IsotropicLinearElasticity}
    Mesh: {Length: [1, 1, 1], Elements: [1, 1, 1], Quadrature: Eight}
    BoundaryConditions:
      - {Name: fix-x, Type: Displacement, Boundary: xmin, Time: [0, 1], x: [0, 0]}
    NonlinearOptions: {DisplacementTolerance: 1.0e-3, ResidualTolerance: 1.0e-3}
    Time: {Start: 0.0, End: 1.0, Increments: {Initial: 0.25}}
    Threads: 4  # optional, caps the Numba worker threads

Only the structure is checked here. The model, boundary and solver
objects validate their own values when they are built.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from nlfem.exceptions import ConfigurationError


def _section(data: Mapping[str, Any], key: str, required: bool = True) -> Dict[str, Any]:
    value = data.get(key)
    if value is None:
        if required:
            raise ConfigurationError(f'"{key}" must be specified in the input')
        return {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f'"{key}" must be a key/value block (got {type(value).__name__})')
    return dict(value)


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    raise ConfigurationError(f'"{key}" must be true or false (got {value!r})')


def _triple(value: Any, key: str, kind=float) -> tuple:
    if not isinstance(value, (list, tuple)) or len(value) != 3:
        raise ConfigurationError(f'Mesh "{key}" must be a list of three values (got {value!r})')
    try:
        return tuple(kind(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f'Mesh "{key}" has a non-numeric entry: {value!r}') from exc


@dataclass
class MeshConfig:
    """Structured hexahedral block."""

    length: tuple = (1.0, 1.0, 1.0)
    elements: tuple = (1, 1, 1)
    quadrature: str = "Eight"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MeshConfig":
        if "Length" not in data or "Elements" not in data:
            raise ConfigurationError('"Mesh" requires "Length" and "Elements"')
        return cls(
            length=_triple(data["Length"], "Length", float),
            elements=_triple(data["Elements"], "Elements", int),
            quadrature=str(data.get("Quadrature", "Eight")),
        )


@dataclass
class VisualisationConfig:
    fields: List[str] = field(default_factory=list)
    write_every: int = 1
    directory: str = "output"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VisualisationConfig":
        fields = data.get("Fields", [])
        if not isinstance(fields, (list, tuple)):
            raise ConfigurationError('Visualisation "Fields" must be a list of names')
        write_every = int(data.get("WriteEvery", 1))
        if write_every < 1:
            raise ConfigurationError(f'Visualisation "WriteEvery" must be >= 1 (got {write_every})')
        return cls(
            fields=[str(f) for f in fields],
            write_every=write_every,
            directory=str(data.get("Directory", "output")),
        )


@dataclass
class LoadCase:
    """Boundary conditions and time span of one load case."""

    boundary_conditions: List[Dict[str, Any]]
    time: Dict[str, Any]

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], required_boundaries: bool = True) -> "LoadCase":
        time = _section(data, "Time")
        if "End" not in time:
            raise ConfigurationError('"Time" requires an "End" value')
        boundaries = data.get("BoundaryConditions")
        if boundaries is None:
            if required_boundaries:
                raise ConfigurationError('"BoundaryConditions" must be specified in the input')
            boundaries = []
        if not isinstance(boundaries, list):
            raise ConfigurationError('"BoundaryConditions" must be a list')
        return cls(boundary_conditions=[dict(b) for b in boundaries], time=time)


@dataclass
class SimulationConfig:
    name: str
    material: Dict[str, Any]
    constitutive: Dict[str, Any]
    mesh: MeshConfig
    load_case: LoadCase
    nonlinear: Dict[str, Any] = field(default_factory=dict)
    linear_solver: Dict[str, Any] = field(default_factory=dict)
    visualisation: Optional[VisualisationConfig] = None
    steps: List[LoadCase] = field(default_factory=list)

    debug_newton: bool = False
    debug_substeps: bool = False
    use_numba: bool = True
    threads: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SimulationConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError("The input document must be a key/value tree")

        material = _section(data, "Material")
        if not material.get("Name"):
            raise ConfigurationError('"Material" requires a "Name"')
        constitutive = _section(data, "ConstitutiveModel")
        if not constitutive.get("Name"):
            raise ConfigurationError('"ConstitutiveModel" requires a "Name"')

        steps = data.get("Steps") or []
        if not isinstance(steps, list):
            raise ConfigurationError('"Steps" must be a list of load cases')

        threads = data.get("Threads")
        if threads is not None and (isinstance(threads, bool) or not isinstance(threads, int) or threads < 1):
            raise ConfigurationError(f'"Threads" must be a positive integer (got {threads!r})')

        visualisation = data.get("Visualisation")
        return cls(
            name=str(data.get("Name", "simulation")),
            material=material,
            constitutive=constitutive,
            mesh=MeshConfig.from_dict(_section(data, "Mesh")),
            load_case=LoadCase.from_dict(data),
            nonlinear=_section(data, "NonlinearOptions", required=False),
            linear_solver=_section(data, "LinearSolver", required=False),
            visualisation=None if visualisation is None else VisualisationConfig.from_dict(visualisation),
            steps=[LoadCase.from_dict(s, required_boundaries=False) for s in steps],
            debug_newton=_as_bool(data.get("debug_newton", False), "debug_newton"),
            debug_substeps=_as_bool(data.get("debug_substeps", False), "debug_substeps"),
            use_numba=_as_bool(data.get("use_numba", True), "use_numba"),
            threads=threads,
        )


def load_input(source: Union[str, Path, Mapping[str, Any]]) -> SimulationConfig:
    """Parse an input file (YAML/JSON) or an already-loaded dictionary."""
    if isinstance(source, Mapping):
        return SimulationConfig.from_dict(source)

    path = Path(source)
    if not path.is_file():
        raise ConfigurationError(f"Input file '{path}' does not exist")
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Could not parse '{path}': {exc}") from exc
    if data is None:
        raise ConfigurationError(f"Input file '{path}' is empty")
    return SimulationConfig.from_dict(data)


def save_input(data: Mapping[str, Any], filepath: Union[str, Path]) -> None:
    """Write an input document as YAML."""
    with open(filepath, "w") as f:
        yaml.safe_dump(dict(data), f, default_flow_style=False, sort_keys=False)
