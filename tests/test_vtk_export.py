import numpy as np
import pytest

from nlfem.exceptions import ConfigurationError
from nlfem.fem.mesh import structured_hex_mesh
from nlfem.output import Visualisation, write_pvd_collection, write_vtk_unstructured_grid


def test_unstructured_grid_layout(tmp_path):
    nodes, elems = structured_hex_mesh(2.0, 1.0, 1.0, 2, 1, 1)
    path = tmp_path / "block.vtk"
    write_vtk_unstructured_grid(
        str(path),
        nodes,
        elems,
        point_data={"Temperature": np.arange(nodes.shape[0], dtype=float), "Bad": np.zeros(3)},
        cell_data={"Volume": np.ones(2)},
    )
    text = path.read_text()

    assert f"POINTS {nodes.shape[0]} float" in text
    assert "CELLS 2 18" in text
    lines = text.splitlines()
    i = lines.index("CELL_TYPES 2")
    assert lines[i + 1:i + 3] == ["12", "12"], "both cells must be VTK hexahedra"
    assert "SCALARS Temperature float 1" in text
    assert "Bad" not in text, "fields with the wrong length are skipped"
    assert "CELL_DATA 2" in text
    assert "SCALARS Volume float 1" in text


def test_unsupported_cells_raise(tmp_path):
    nodes, elems = structured_hex_mesh(1.0, 1.0, 1.0, 1, 1, 1)
    with pytest.raises(ConfigurationError, match="4 nodes"):
        write_vtk_unstructured_grid(str(tmp_path / "quad.vtk"), nodes, elems[:, :4])


def test_pvd_lists_every_entry(tmp_path):
    path = tmp_path / "run.pvd"
    write_pvd_collection(str(path), [(0.0, "run_0.vtk"), (0.5, "run_1.vtk")])
    text = path.read_text()
    assert '<DataSet timestep="0.5" file="run_1.vtk"/>' in text
    assert text.count("<DataSet") == 2


def test_visualisation_skips_steps_between_writes(tmp_path):
    with pytest.raises(ConfigurationError):
        Visualisation(str(tmp_path), write_every=0)

    vis = Visualisation(str(tmp_path / "out"), name="skip", write_every=2)
    assert vis.write(1, 0.5, mesh=None, displacement=np.zeros(3)) is None
    assert not (tmp_path / "out").exists()
