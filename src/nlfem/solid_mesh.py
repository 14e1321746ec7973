"""Solid mesh: nodal coordinates, submeshes and boundary conditions.

The mesh is the object the static solver talks to. It owns the shared
:class:`~nlfem.fem.mesh.NodalCoordinates`, one :class:`~nlfem.submesh.SolidSubmesh`
per element group, and the boundary conditions built from the
``BoundaryConditions`` list of the input.

Boundary entries
----------------
``{"Name": ..., "Type": ..., "Boundary": "xmin", "Time": [...], "x": [...], ...}``

* ``Displacement``: Dirichlet values on dofs ``3 * node + axis``;
* ``NodalForce``: the same force on every node of the set;
* ``BodyForce``: force per unit reference volume (``Boundary`` ignored);
* ``Traction``: force per unit reference area on the exterior faces of the set;
* ``Pressure``: ``Value`` per unit reference area along the inward normal.

Surface loads are non-follower: they are integrated once on the reference
faces. ``Convection`` belongs to diffusion problems and is rejected.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from nlfem.exceptions import ConfigurationError
from nlfem.fem.bcs import BodyForce, Dirichlet, LoadHistory, NodalForce, Pressure, Traction
from nlfem.fem.mesh import NodalCoordinates, boundary_faces, boundary_nodes
from nlfem.submesh import SolidSubmesh

AXES = {"x": 0, "y": 1, "z": 2}

IMPLEMENTED_BOUNDARIES = ("Displacement", "NodalForce", "BodyForce", "Traction", "Pressure")
UNSUPPORTED_BOUNDARIES = ("Convection",)


def check_boundary_conditions(boundary_data: Sequence[Mapping[str, Any]]) -> None:
    """Validate names, types and history lengths of a ``BoundaryConditions`` list."""
    if boundary_data is None:
        return
    seen = set()
    for i, boundary in enumerate(boundary_data):
        if not boundary.get("Name"):
            raise ConfigurationError(f'Missing "Name" in BoundaryConditions (entry {i})')
        if not boundary.get("Type"):
            raise ConfigurationError(f'Missing "Type" in BoundaryConditions (entry {i})')

        name = str(boundary["Name"])
        if name in seen:
            raise ConfigurationError(f'Duplicate boundary name "{name}" in BoundaryConditions')
        seen.add(name)

        kind = str(boundary["Type"])
        if kind in UNSUPPORTED_BOUNDARIES:
            raise ConfigurationError(f'Boundary "{name}": Type "{kind}" is not supported for solids')
        if kind not in IMPLEMENTED_BOUNDARIES:
            raise ConfigurationError(
                f'Boundary "{name}": unknown Type "{kind}" (expected one of {", ".join(IMPLEMENTED_BOUNDARIES)})'
            )

        if "Time" not in boundary:
            raise ConfigurationError(f'Boundary "{name}" requires a "Time" list')
        n_times = len(boundary["Time"])
        if kind == "Pressure":
            if "Value" not in boundary:
                raise ConfigurationError(f'Boundary "{name}" requires a "Value" list')
            axes = ["Value"]
        else:
            axes = [a for a in AXES if a in boundary]
        if not axes:
            raise ConfigurationError(f'Boundary "{name}" prescribes no component (x, y or z)')
        for a in axes:
            if len(boundary[a]) != n_times:
                raise ConfigurationError(
                    f'Boundary "{name}": "{a}" has {len(boundary[a])} values for {n_times} times'
                )
        if kind != "BodyForce" and "Boundary" not in boundary:
            raise ConfigurationError(f'Boundary "{name}" requires a "Boundary" node set')


class SolidMesh:
    """Mesh of solid elements with boundary conditions."""

    def __init__(
        self,
        nodes: np.ndarray,
        connectivities,
        material_data: Mapping[str, Any],
        constitutive_data: Mapping[str, Any],
        boundary_data: Optional[Sequence[Mapping[str, Any]]] = None,
        *,
        quadrature="Eight",
        use_numba: bool = True,
        debug: bool = False,
    ):
        boundary_data = list(boundary_data or [])
        check_boundary_conditions(boundary_data)

        self.coordinates = NodalCoordinates(nodes)
        self.debug = bool(debug)

        groups = [connectivities] if np.ndim(connectivities) == 2 else list(connectivities)
        if not groups:
            raise ConfigurationError("The mesh has no element groups")
        self.submeshes: List[SolidSubmesh] = [
            SolidSubmesh(
                material_data,
                constitutive_data,
                self.coordinates,
                conn,
                quadrature=quadrature,
                use_numba=use_numba,
            )
            for conn in groups
        ]

        self._dirichlet: Dict[str, List[Dirichlet]] = {}
        self._loads: Dict[str, List] = {}
        self._allocate_boundary_conditions(boundary_data)

    # ------------------------------------------------------------------
    # Boundary conditions
    # ------------------------------------------------------------------

    def _allocate_boundary_conditions(self, boundary_data) -> None:
        nodal_volume = None
        for boundary in boundary_data:
            name = str(boundary["Name"])
            kind = str(boundary["Type"])
            times = boundary["Time"]

            if kind == "BodyForce":
                if nodal_volume is None:
                    nodal_volume = self.nodal_volumes()
                self._loads[name] = [
                    BodyForce(axis, nodal_volume, LoadHistory(times, boundary[a]))
                    for a, axis in AXES.items()
                    if a in boundary
                ]
                continue

            nodes = boundary_nodes(self.coordinates.X, boundary["Boundary"])
            if nodes.size == 0:
                raise ConfigurationError(f'Boundary "{name}" selects no nodes')

            if kind in ("Traction", "Pressure"):
                # faces shared between submeshes are interior
                conn = np.concatenate([submesh.connectivities() for submesh in self.submeshes])
                faces = boundary_faces(conn, nodes)
                if faces.shape[0] == 0:
                    raise ConfigurationError(f'Boundary "{name}" selects no element faces')
                X = self.coordinates.X
                if kind == "Pressure":
                    self._loads[name] = [Pressure(faces, X, LoadHistory(times, boundary["Value"]))]
                else:
                    self._loads[name] = [
                        Traction(axis, faces, X, LoadHistory(times, boundary[a]))
                        for a, axis in AXES.items()
                        if a in boundary
                    ]
                continue

            items = []
            for a, axis in AXES.items():
                if a not in boundary:
                    continue
                history = LoadHistory(times, boundary[a])
                dofs = 3 * nodes + axis
                items.append(Dirichlet(dofs, history) if kind == "Displacement" else NodalForce(dofs, history))

            if kind == "Displacement":
                self._dirichlet[name] = items
            else:
                self._loads[name] = items

    def internal_restart(self, boundary_data: Optional[Sequence[Mapping[str, Any]]]) -> None:
        """Start a new load case.

        Boundaries named in ``boundary_data`` replace the previous ones.
        Every other boundary keeps the value it reached at the end of the
        previous load case.
        """
        boundary_data = list(boundary_data or [])
        check_boundary_conditions(boundary_data)
        named = {str(b["Name"]) for b in boundary_data}

        for name, group in list(self._dirichlet.items()) + list(self._loads.items()):
            if name in named:
                continue
            print(f"  [step] Boundary conditions for \"{name}\" have been inherited from the last load step")
            for boundary in group:
                boundary.history = boundary.history.held_at_end()

        for name in named:
            self._dirichlet.pop(name, None)
            self._loads.pop(name, None)
        self._allocate_boundary_conditions(boundary_data)

    def dirichlet_boundaries(self) -> Dict[str, List[Dirichlet]]:
        return self._dirichlet

    def dirichlet_dofs_and_values(self, time: float) -> Tuple[np.ndarray, np.ndarray]:
        """Constrained dofs and their prescribed values (later boundaries win on overlap)."""
        dofs, values = [], []
        for group in self._dirichlet.values():
            for boundary in group:
                d = boundary.dof_view()
                dofs.append(d)
                values.append(np.full(d.size, boundary.value_view(time)))
        if not dofs:
            return np.zeros(0, dtype=int), np.zeros(0, dtype=float)
        return np.concatenate(dofs), np.concatenate(values)

    def dirichlet_dofs(self) -> np.ndarray:
        dofs, _ = self.dirichlet_dofs_and_values(0.0)
        return np.unique(dofs)

    def external_force(self, time: float) -> np.ndarray:
        """Non-follower external force vector at ``time``."""
        f_ext = np.zeros(self.active_dofs(), dtype=float)
        for group in self._loads.values():
            for load in group:
                load.add_to(f_ext, time)
        return f_ext

    def boundary_times(self) -> np.ndarray:
        """Sorted history knots of every boundary (mandatory load-step times)."""
        knots = [b.times() for group in self._dirichlet.values() for b in group]
        knots += [b.times() for group in self._loads.values() for b in group]
        if not knots:
            return np.zeros(0, dtype=float)
        return np.unique(np.concatenate(knots))

    # ------------------------------------------------------------------
    # Mesh-wide operations
    # ------------------------------------------------------------------

    def active_dofs(self) -> int:
        return 3 * self.coordinates.size

    def nodal_volumes(self) -> np.ndarray:
        return sum(submesh.nodal_volumes() for submesh in self.submeshes)

    def update_internal_variables(self, u: np.ndarray, time_step_size: float = 0.0) -> None:
        t0 = time.perf_counter()

        self.coordinates.update_current_configuration(u)
        for submesh in self.submeshes:
            submesh.update_internal_variables(time_step_size)

        if self.debug:
            print(f"      [timing] Internal variable update took {time.perf_counter() - t0:.3f}s")

    def save_internal_variables(self, have_converged: bool) -> None:
        for submesh in self.submeshes:
            submesh.save_internal_variables(have_converged)

    def nodal_averaged_variable(self, name: str) -> np.ndarray:
        """Nodal average of a quadrature field over every submesh that stores it."""
        acc, count = None, None
        scalar = False
        for submesh in self.submeshes:
            if not submesh.variables.has(name):
                continue
            a, c = submesh.nodal_sums(name)
            scalar = submesh.variables(name).ndim == 1
            acc = a if acc is None else acc + a
            count = c if count is None else count + c
        if acc is None:
            raise ConfigurationError(f'No submesh stores the internal variable "{name}"')
        used = count > 0
        acc[used] /= count[used, None]
        return acc[:, 0] if scalar else acc
