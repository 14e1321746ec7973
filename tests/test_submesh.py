import numpy as np
import pytest

from nlfem.exceptions import ComputationalError, ConfigurationError
from nlfem.fem.mesh import NodalCoordinates, boundary_faces, boundary_nodes, structured_hex_mesh
from nlfem.internal_variables import CAUCHY, DET_F, TANGENT_OPERATOR
from nlfem.solid_mesh import SolidMesh, check_boundary_conditions
from nlfem.submesh import SolidSubmesh

MATERIAL = {"Name": "steel", "ElasticModulus": 1000.0, "PoissonsRatio": 0.3, "Density": 7.8}
ELASTIC = {"Name": "IsotropicLinearElasticity"}


def _submesh(nx=2, ny=1, nz=1, lengths=(2.0, 1.0, 1.0), material=MATERIAL, constitutive=ELASTIC):
    nodes, elems = structured_hex_mesh(*lengths, nx, ny, nz)
    coords = NodalCoordinates(nodes)
    return SolidSubmesh(material, constitutive, coords, elems)


def test_inverted_element_raises_with_location():
    sub = _submesh(1, 1, 1, (1.0, 1.0, 1.0))
    X = sub.coordinates.X
    sub.coordinates.update_current_configuration(-2.0 * X)
    with pytest.raises(ComputationalError, match="element 0 and local quadrature point 0") as info:
        sub.update_internal_variables(0.0)
    assert "another 7 violations" in str(info.value)


def _poison(sub, monkeypatch, write):
    update = sub.cm.update_internal_variables

    def poisoned(dt):
        update(dt)
        write(sub.variables)

    monkeypatch.setattr(sub.cm, "update_internal_variables", poisoned)


def test_non_finite_tangent_is_reported_with_location(monkeypatch):
    sub = _submesh()

    def write(v):
        v(TANGENT_OPERATOR)[9, 2, 2] = np.inf

    _poison(sub, monkeypatch, write)
    with pytest.raises(ComputationalError, match="Non-finite TangentOperator at element 1, quadrature point 1"):
        sub.update_internal_variables(0.0)


def test_division_by_zero_in_the_update_is_a_computational_error(monkeypatch):
    sub = _submesh()

    def write(v):
        v(CAUCHY)[11, 0, 0] = (np.ones(1) / np.zeros(1))[0]

    _poison(sub, monkeypatch, write)
    with pytest.raises(ComputationalError, match="Floating point error .* at element 1, quadrature point 3") as info:
        sub.update_internal_variables(0.0)
    assert isinstance(info.value.__cause__, FloatingPointError)


def test_mass_matrices_carry_the_total_mass():
    sub = _submesh()
    volume = 2.0
    rho = MATERIAL["Density"]

    consistent = sum(sub.consistent_mass(e)[1].sum() for e in range(sub.elements()))
    lumped = sum(sub.diagonal_mass(e)[1].sum() for e in range(sub.elements()))
    assert consistent == pytest.approx(3.0 * rho * volume, rel=1e-12)
    assert lumped == pytest.approx(3.0 * rho * volume, rel=1e-12)


def test_mass_without_density_raises():
    material = {k: v for k, v in MATERIAL.items() if k != "Density"}
    sub = _submesh(material=material)
    with pytest.raises(ConfigurationError, match="Density"):
        sub.consistent_mass(0)


def test_element_stiffness_is_symmetric_and_translation_free():
    sub = _submesh()
    sub.update_internal_variables(0.0)
    dofs, ke = sub.tangent_stiffness(1)

    assert dofs.shape == (24,)
    assert np.allclose(ke, ke.T, atol=1e-10 * np.abs(ke).max())
    for axis in range(3):
        t = np.zeros(24)
        t[axis::3] = 1.0
        assert np.linalg.norm(ke @ t) < 1e-9 * np.abs(ke).max(), f"rigid translation along {axis} loads the element"

    w = np.linalg.eigvalsh(ke)
    assert np.sum(w > 1e-8 * w.max()) == 18, "hex8 with full integration has 6 rigid body modes"


def test_batched_and_single_element_integrals_agree():
    sub = _submesh(nx=3)
    rng = np.random.default_rng(0)
    u = 1e-3 * rng.normal(size=sub.coordinates.X.shape)
    sub.coordinates.update_current_configuration(u)
    sub.update_internal_variables(0.0)

    dof_list, all_k = sub.all_tangent_stiffness()
    _, all_f = sub.all_internal_force()
    for e in range(sub.elements()):
        dofs, ke = sub.tangent_stiffness(e)
        _, fe = sub.internal_force(e)
        assert np.array_equal(dofs, dof_list[e])
        assert np.allclose(ke, all_k[e])
        assert np.allclose(fe, all_f[e])


def test_finite_deformation_adds_geometric_stiffness():
    rubber = {"Name": "rubber", "ElasticModulus": 10.0e6, "PoissonsRatio": 0.45, "SegmentsPerChain": 50}
    sub = _submesh(1, 1, 1, (1.0, 1.0, 1.0), material=rubber, constitutive={"Name": "Microsphere", "Type": "Affine"})
    X = sub.coordinates.X
    u = np.zeros_like(X)
    u[:, 0] = 0.1 * X[:, 0]
    sub.coordinates.update_current_configuration(u)
    sub.update_internal_variables(0.0)

    _, ke = sub.tangent_stiffness(0)
    _, fe = sub.internal_force(0)
    assert np.all(np.isfinite(ke))
    assert np.abs(fe).max() > 0.0
    assert np.allclose(ke, ke.T, atol=1e-8 * np.abs(ke).max())
    assert np.allclose(sub.variables(DET_F), np.linalg.det(np.diag([1.1, 1.0, 1.0])))


def test_nodal_average_of_constant_field_is_exact():
    nodes, elems = structured_hex_mesh(2.0, 1.0, 1.0, 2, 1, 1)
    mesh = SolidMesh(nodes, [elems[:1], elems[1:]], MATERIAL, ELASTIC)
    mesh.update_internal_variables(np.zeros(mesh.active_dofs()))

    detF = mesh.nodal_averaged_variable(DET_F)
    assert detF.shape == (nodes.shape[0],)
    assert np.allclose(detF, 1.0)

    assert mesh.nodal_volumes().sum() == pytest.approx(2.0)
    with pytest.raises(ConfigurationError, match="Chains"):
        mesh.nodal_averaged_variable("Chains")


def test_unsupported_topology_and_bad_connectivity():
    nodes, elems = structured_hex_mesh(1.0, 1.0, 1.0, 1, 1, 1)
    coords = NodalCoordinates(nodes)
    with pytest.raises(ConfigurationError, match="not supported"):
        SolidSubmesh(MATERIAL, ELASTIC, coords, elems, topology="tetrahedron")
    with pytest.raises(ConfigurationError):
        SolidSubmesh(MATERIAL, ELASTIC, coords, elems[:, :4])
    mirrored = elems[:, [4, 5, 6, 7, 0, 1, 2, 3]]
    with pytest.raises(ConfigurationError, match="reference Jacobian"):
        SolidSubmesh(MATERIAL, ELASTIC, coords, mirrored)


GOOD = {"Name": "pull", "Type": "Displacement", "Boundary": "xmax", "Time": [0.0, 1.0], "x": [0.0, 1.0]}


@pytest.mark.parametrize(
    "boundaries, match",
    [
        ([dict(GOOD, Type="Convection")], "not supported"),
        ([dict(GOOD, Type="Pressure")], "Value"),
        ([dict(GOOD, Type="Pressure", Value=[1.0])], "1 values for 2 times"),
        ([dict(GOOD, Type="Glue")], "unknown Type"),
        ([GOOD, dict(GOOD)], "Duplicate"),
        ([{k: v for k, v in GOOD.items() if k != "Name"}], "Name"),
        ([{k: v for k, v in GOOD.items() if k != "Type"}], "Type"),
        ([dict(GOOD, x=[0.0, 0.5, 1.0])], "3 values for 2 times"),
        ([{k: v for k, v in GOOD.items() if k != "x"}], "no component"),
        ([{k: v for k, v in GOOD.items() if k != "Boundary"}], "Boundary"),
    ],
)
def test_boundary_list_errors(boundaries, match):
    with pytest.raises(ConfigurationError, match=match):
        check_boundary_conditions(boundaries)


def test_boundary_allocation_and_forces():
    nodes, elems = structured_hex_mesh(1.0, 1.0, 1.0, 1, 1, 1)
    boundaries = [
        GOOD,
        {"Name": "fix", "Type": "Displacement", "Boundary": "xmin", "Time": [0.0, 1.0], "x": [0.0, 0.0]},
        {"Name": "push", "Type": "NodalForce", "Boundary": "zmax", "Time": [0.0, 2.0], "z": [0.0, -4.0]},
        {"Name": "gravity", "Type": "BodyForce", "Time": [0.0, 1.0], "y": [0.0, -8.0]},
    ]
    mesh = SolidMesh(nodes, elems, MATERIAL, ELASTIC, boundaries)

    dofs, values = mesh.dirichlet_dofs_and_values(0.5)
    assert dofs.size == 8
    assert np.allclose(values[:4], 0.5)
    assert np.array_equal(mesh.dirichlet_dofs(), np.sort(dofs))

    f = mesh.external_force(1.0)
    assert f[2::3].sum() == pytest.approx(4 * -2.0)
    assert f[1::3].sum() == pytest.approx(-8.0), "body force must integrate to b * volume"
    assert np.allclose(mesh.boundary_times(), [0.0, 1.0, 2.0])


def test_restart_keeps_unnamed_boundaries_at_final_value(capsys):
    nodes, elems = structured_hex_mesh(1.0, 1.0, 1.0, 1, 1, 1)
    mesh = SolidMesh(nodes, elems, MATERIAL, ELASTIC, [GOOD])
    mesh.internal_restart([{"Name": "push", "Type": "NodalForce", "Boundary": "zmax", "Time": [1.0, 2.0], "z": [0.0, 1.0]}])

    out = capsys.readouterr().out
    assert 'Boundary conditions for "pull" have been inherited' in out
    _, values = mesh.dirichlet_dofs_and_values(1.7)
    assert np.allclose(values, 1.0)
    assert mesh.external_force(2.0)[2::3].sum() == pytest.approx(4.0)

    mesh.internal_restart([dict(GOOD, Time=[2.0, 3.0], x=[1.0, 0.0])])
    _, values = mesh.dirichlet_dofs_and_values(2.5)
    assert np.allclose(values, 0.5)


def test_exterior_faces_skip_shared_faces():
    nodes, elems = structured_hex_mesh(2.0, 1.0, 3.0, 2, 2, 3)
    everything = np.arange(nodes.shape[0])
    assert boundary_faces(elems, everything).shape == (2 * (2 * 2 + 2 * 3 + 2 * 3), 4)
    assert boundary_faces(elems, boundary_nodes(nodes, "xmax")).shape == (2 * 3, 4)


def test_traction_integrates_to_traction_times_face_area():
    nodes, elems = structured_hex_mesh(2.0, 1.0, 3.0, 2, 2, 3)
    traction = {"Name": "shear", "Type": "Traction", "Boundary": "xmax", "Time": [0.0, 1.0], "x": [0.0, 5.0], "z": [0.0, -1.0]}
    mesh = SolidMesh(nodes, elems, MATERIAL, ELASTIC, [traction])

    f = mesh.external_force(1.0)
    face_area = 1.0 * 3.0
    assert f[0::3].sum() == pytest.approx(5.0 * face_area)
    assert f[2::3].sum() == pytest.approx(-1.0 * face_area)
    assert np.abs(f[1::3]).max() == 0.0

    off_face = np.setdiff1d(np.arange(nodes.shape[0]), boundary_nodes(nodes, "xmax"))
    assert np.abs(f.reshape(-1, 3)[off_face]).max() == 0.0
    assert mesh.external_force(0.5)[0::3].sum() == pytest.approx(2.5 * face_area)


def test_pressure_acts_along_the_inward_normal():
    nodes, elems = structured_hex_mesh(2.0, 1.0, 3.0, 2, 2, 3)
    boundaries = [
        {"Name": "top", "Type": "Pressure", "Boundary": "zmax", "Time": [0.0, 1.0], "Value": [0.0, 2.0]},
        {"Name": "left", "Type": "Pressure", "Boundary": "xmin", "Time": [0.0, 1.0], "Value": [0.0, 4.0]},
    ]
    mesh = SolidMesh(nodes, elems, MATERIAL, ELASTIC, boundaries)
    f = mesh.external_force(1.0)

    # zmax face: 2 x 1, pushed down; xmin face: 1 x 3, pushed in +x
    assert f[2::3].sum() == pytest.approx(-2.0 * 2.0)
    assert f[0::3].sum() == pytest.approx(4.0 * 3.0)
    assert f[1::3].sum() == pytest.approx(0.0, abs=1e-12)


def test_uniform_pressure_on_closed_surface_has_no_resultant():
    nodes, elems = structured_hex_mesh(2.0, 1.0, 1.0, 2, 1, 1)
    everywhere = {"Name": "p", "Type": "Pressure", "Boundary": "all", "Time": [0.0, 1.0], "Value": [0.0, 3.0]}
    mesh = SolidMesh(nodes, [elems[:1], elems[1:]], MATERIAL, ELASTIC, [everywhere])

    f = mesh.external_force(1.0).reshape(-1, 3)
    assert np.allclose(f.sum(axis=0), 0.0, atol=1e-12)
    assert np.abs(f).max() > 0.0
