import pytest

from geosearch.grid_index import GridKeyIndex


def test_add_records_key_under_every_cell_once():
    index = GridKeyIndex()
    index.add(["g1_1", "g1_2", "g1_1"], "k1")
    assert index.keys_for("g1_1") == ["k1"]
    assert index.keys_for("g1_2") == ["k1"]
    assert len(index) == 2


def test_pop_returns_and_forgets_keys():
    index = GridKeyIndex()
    index.add(["g1_1"], "k1")
    index.add(["g1_1"], "k2")
    assert index.pop("g1_1") == ["k1", "k2"]
    assert index.pop("g1_1") == []
    assert len(index) == 0


def test_keys_per_cell_evicts_oldest():
    index = GridKeyIndex(keys_per_cell=2)
    for key in ("k1", "k2", "k3"):
        index.add(["g0_0"], key)
    assert index.keys_for("g0_0") == ["k2", "k3"]


def test_rewriting_a_key_refreshes_it():
    index = GridKeyIndex(keys_per_cell=2)
    index.add(["g0_0"], "k1")
    index.add(["g0_0"], "k2")
    index.add(["g0_0"], "k1")
    index.add(["g0_0"], "k3")
    assert index.keys_for("g0_0") == ["k1", "k3"]


def test_max_cells_evicts_least_recently_written_cell():
    index = GridKeyIndex(max_cells=2)
    index.add(["a"], "k1")
    index.add(["b"], "k2")
    index.add(["a"], "k3")
    index.add(["c"], "k4")
    assert len(index) == 2
    assert index.keys_for("b") == []
    assert index.keys_for("a") == ["k1", "k3"]


def test_capacities_must_be_positive():
    with pytest.raises(ValueError):
        GridKeyIndex(max_cells=0)
    with pytest.raises(ValueError):
        GridKeyIndex(keys_per_cell=0)
