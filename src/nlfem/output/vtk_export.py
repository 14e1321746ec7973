"""VTK export of solid results.

Legacy ASCII unstructured grids (one file per written step) plus a
ParaView ``.pvd`` collection listing ``(time, file)`` pairs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from nlfem.exceptions import ConfigurationError

VTK_HEXAHEDRON = 12

# Cell type by nodes per element
_CELL_TYPES = {8: VTK_HEXAHEDRON}


def _write_point_field(f, name: str, values: np.ndarray) -> None:
    width = values.shape[1] if values.ndim == 2 else 1
    if width == 1:
        f.write(f"SCALARS {name} float 1\n")
        f.write("LOOKUP_TABLE default\n")
        for val in values.reshape(-1):
            f.write(f"{float(val):.6e}\n")
    elif width == 3:
        f.write(f"VECTORS {name} float\n")
        for v in values:
            f.write(f"{v[0]:.6e} {v[1]:.6e} {v[2]:.6e}\n")
    elif width == 9:
        f.write(f"TENSORS {name} float\n")
        for v in values:
            t = v.reshape(3, 3)
            for row in t:
                f.write(f"{row[0]:.6e} {row[1]:.6e} {row[2]:.6e}\n")
            f.write("\n")
    else:
        f.write(f"FIELD {name}_data 1\n")
        f.write(f"{name} {width} {values.shape[0]} float\n")
        for v in values:
            f.write(" ".join(f"{float(x):.6e}" for x in v) + "\n")


def write_vtk_unstructured_grid(
    filename: str,
    nodes: np.ndarray,
    elems: np.ndarray,
    point_data: Optional[Dict[str, np.ndarray]] = None,
    cell_data: Optional[Dict[str, np.ndarray]] = None,
) -> None:
    """Write a VTK unstructured grid file (legacy ASCII format).

    Parameters
    ----------
    filename : str
        Output .vtk filename
    nodes : np.ndarray
        Node coordinates [n_nodes, 3]
    elems : np.ndarray
        Element connectivity [n_elem, 8]
    point_data : dict
        Nodal data {field_name: values[n_nodes] or values[n_nodes, k]}
        (k = 3 is written as a vector, k = 9 as a tensor)
    cell_data : dict
        Element data {field_name: values[n_elem]}
    """
    nodes = np.asarray(nodes, dtype=float)
    elems = np.asarray(elems, dtype=int)
    n_nodes = nodes.shape[0]
    n_elem, n_per = elems.shape
    if n_per not in _CELL_TYPES:
        raise ConfigurationError(f"No VTK cell type for elements with {n_per} nodes")

    with open(filename, "w") as f:
        f.write("# vtk DataFile Version 3.0\n")
        f.write("nlfem solid results\n")
        f.write("ASCII\n")
        f.write("DATASET UNSTRUCTURED_GRID\n")

        f.write(f"POINTS {n_nodes} float\n")
        for node in nodes:
            f.write(f"{node[0]:.6e} {node[1]:.6e} {node[2]:.6e}\n")

        f.write(f"\nCELLS {n_elem} {n_elem * (1 + n_per)}\n")
        for elem in elems:
            f.write(f"{n_per} " + " ".join(str(int(n)) for n in elem) + "\n")

        f.write(f"\nCELL_TYPES {n_elem}\n")
        for _ in range(n_elem):
            f.write(f"{_CELL_TYPES[n_per]}\n")

        if point_data:
            f.write(f"\nPOINT_DATA {n_nodes}\n")
            for field_name, values in point_data.items():
                values = np.asarray(values, dtype=float)
                if values.shape[0] != n_nodes:
                    print(f"Warning: {field_name} has wrong size ({values.shape[0]} != {n_nodes}), skipping")
                    continue
                _write_point_field(f, field_name, values)

        if cell_data:
            f.write(f"\nCELL_DATA {n_elem}\n")
            for field_name, values in cell_data.items():
                values = np.asarray(values, dtype=float).reshape(-1)
                if values.size != n_elem:
                    print(f"Warning: {field_name} has wrong size ({values.size} != {n_elem}), skipping")
                    continue
                f.write(f"SCALARS {field_name} float 1\n")
                f.write("LOOKUP_TABLE default\n")
                for val in values:
                    f.write(f"{float(val):.6e}\n")


def write_pvd_collection(filename: str, entries: Iterable[Tuple[float, str]]) -> None:
    """ParaView collection file for a series of ``(time, file)`` entries."""
    with open(filename, "w") as f:
        f.write('<?xml version="1.0"?>\n')
        f.write('<VTKFile type="Collection" version="0.1">\n')
        f.write("  <Collection>\n")
        for time, vtk_file in entries:
            f.write(f'    <DataSet timestep="{time:.10g}" file="{vtk_file}"/>\n')
        f.write("  </Collection>\n")
        f.write("</VTKFile>\n")


class Visualisation:
    """Periodic snapshots of the displacement and of nodal-averaged internal variables."""

    def __init__(self, directory: str, name: str = "simulation", fields: Iterable[str] = (), write_every: int = 1):
        if int(write_every) < 1:
            raise ConfigurationError(f"write_every must be >= 1 (got {write_every})")
        self.directory = Path(directory)
        self.name = str(name)
        self.fields = [str(f) for f in fields]
        self.write_every = int(write_every)
        self.written: List[Tuple[float, str]] = []

    def write(self, step: int, time: float, mesh, displacement: np.ndarray) -> Optional[Path]:
        if int(step) % self.write_every != 0:
            return None

        self.directory.mkdir(parents=True, exist_ok=True)
        point_data = {}
        for field_name in self.fields:
            if field_name == "Displacement":
                point_data[field_name] = np.asarray(displacement, dtype=float).reshape(-1, 3)
            else:
                point_data[field_name] = mesh.nodal_averaged_variable(field_name)

        vtk_name = f"{self.name}_{int(step)}.vtk"
        conn = np.vstack([submesh.connectivities() for submesh in mesh.submeshes])
        write_vtk_unstructured_grid(
            str(self.directory / vtk_name), mesh.coordinates.initial_configuration(), conn, point_data=point_data
        )

        self.written.append((float(time), vtk_name))
        write_pvd_collection(str(self.directory / f"{self.name}.pvd"), self.written)
        return self.directory / vtk_name
