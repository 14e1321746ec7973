"""Finite-element collaborators: quadrature, shape functions, mesh, boundaries, linear solvers."""

from .quadrature import HexahedronQuadrature, UnitSphereQuadrature
from .hex8 import Hexahedron8, hex8_shape, quad4_shape
from .mesh import NodalCoordinates, structured_hex_mesh, boundary_nodes, boundary_faces, element_dofs
from .bcs import LoadHistory, Dirichlet, NodalForce, BodyForce, Traction, Pressure, face_integrals, apply_dirichlet
from .linear_solver import make_linear_solver

__all__ = [
    "HexahedronQuadrature", "UnitSphereQuadrature",
    "Hexahedron8", "hex8_shape", "quad4_shape",
    "NodalCoordinates", "structured_hex_mesh", "boundary_nodes", "boundary_faces", "element_dofs",
    "LoadHistory", "Dirichlet", "NodalForce", "BodyForce", "Traction", "Pressure", "face_integrals", "apply_dirichlet",
    "make_linear_solver",
]
