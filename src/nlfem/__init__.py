"""nlfem package: nonlinear static solid mechanics on hexahedral meshes."""

from .exceptions import ComputationalError, ConfigurationError, ConvergenceError, LinearSolveError
from .internal_variables import InternalVariables
from .material import IsotropicElasticPlastic, IsotropicElasticProperty, MicromechanicalElastomer
from .constitutive import AffineMicrosphere, IsotropicLinearElasticity, J2Plasticity
from .material_factory import make_constitutive_model
from .submesh import SolidSubmesh
from .solid_mesh import SolidMesh
from .convergence import ResidualControl
from .load_step import AdaptiveLoadStep
from .static_matrix import StaticMatrix
from .time_control import NewmarkBeta, TimeStepControl
from .config import SimulationConfig, load_input

__version__ = "0.1.0"

__all__ = [
    "ComputationalError", "ConfigurationError", "ConvergenceError", "LinearSolveError",
    "InternalVariables",
    "IsotropicElasticProperty", "IsotropicElasticPlastic", "MicromechanicalElastomer",
    "IsotropicLinearElasticity", "J2Plasticity", "AffineMicrosphere",
    "make_constitutive_model",
    "SolidSubmesh", "SolidMesh",
    "ResidualControl", "AdaptiveLoadStep", "StaticMatrix",
    "TimeStepControl", "NewmarkBeta",
    "SimulationConfig", "load_input",
]
