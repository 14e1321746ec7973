"""Result output (legacy VTK files and ParaView collections)."""

from nlfem.output.vtk_export import Visualisation, write_pvd_collection, write_vtk_unstructured_grid

__all__ = [
    "Visualisation",
    "write_pvd_collection",
    "write_vtk_unstructured_grid",
]
