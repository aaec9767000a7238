import numpy as np
import pytest

from curvetrace.errors import InvalidInputError
from curvetrace.grid import (
    Connectivity,
    GridIndexer,
    as_volume,
    make_connectivity,
    normalize_voxel_dims,
)


def test_sub2ind_is_column_major() -> None:
    grid = GridIndexer(4, 3, 2)
    assert grid.sub2ind(0, 0, 0) == 0
    assert grid.sub2ind(1, 0, 0) == 1
    assert grid.sub2ind(0, 1, 0) == 4
    assert grid.sub2ind(0, 0, 1) == 12
    assert grid.size == 24


def test_ind2sub_inverts_sub2ind() -> None:
    grid = GridIndexer(4, 3, 2)
    for n in range(grid.size):
        assert grid.sub2ind(*grid.ind2sub(n)) == n


def test_is_valid_bounds() -> None:
    grid = GridIndexer.from_shape((5, 5))
    assert grid.shape == (5, 5, 1)
    assert grid.is_valid(4, 4, 0)
    assert not grid.is_valid(5, 0, 0)
    assert not grid.is_valid(0, -1, 0)
    assert not grid.is_valid(0, 0, 1)


def test_connectivity_pads_planar_offsets() -> None:
    conn = Connectivity(np.array([[1, 0], [0, 1], [-1, 0], [0, -1]]))
    assert len(conn) == 4
    assert conn[0] == (1, 0, 0)
    assert conn.is_planar()
    assert conn.index_of((0, -1, 0)) == 3
    assert conn.as_array().shape == (4, 3)


@pytest.mark.parametrize(
    "offsets",
    [
        np.zeros((0, 3)),
        np.array([[0, 0, 0], [1, 0, 0]]),
        np.array([[1, 0, 0], [1, 0, 0]]),
        np.array([[0.5, 0.0, 0.0]]),
        np.array([1, 0, 0]),
    ],
)
def test_connectivity_rejects_bad_offsets(offsets: np.ndarray) -> None:
    with pytest.raises(InvalidInputError):
        Connectivity(offsets)


def test_connectivity_index_of_missing_offset() -> None:
    conn = Connectivity([(1, 0, 0)])
    with pytest.raises(InvalidInputError):
        conn.index_of((2, 0, 0))


def test_make_connectivity_sizes() -> None:
    assert len(make_connectivity(2, 1.0)) == 4
    assert len(make_connectivity(2, 1.5)) == 8
    assert len(make_connectivity(3, 1.0)) == 6
    assert len(make_connectivity(3, 1.8)) == 26
    assert len(make_connectivity(2, 2.0)) == 12
    assert len(make_connectivity(2, 2.0, primitive_only=True)) == 8


def test_make_connectivity_order_is_lexicographic() -> None:
    conn = make_connectivity(2, 1.0)
    assert conn.offsets == ((-1, 0, 0), (0, -1, 0), (0, 1, 0), (1, 0, 0))


def test_as_volume_and_voxel_dims() -> None:
    assert as_volume(np.zeros((3, 4))).shape == (3, 4, 1)
    assert as_volume(np.zeros((3, 4, 2))).shape == (3, 4, 2)
    with pytest.raises(InvalidInputError):
        as_volume(np.zeros(3))
    assert normalize_voxel_dims(None) == (1.0, 1.0, 1.0)
    assert normalize_voxel_dims([2, 1, 0.5]) == (2.0, 1.0, 0.5)
    with pytest.raises(InvalidInputError):
        normalize_voxel_dims([1.0, 1.0])
    with pytest.raises(InvalidInputError):
        normalize_voxel_dims([1.0, 0.0, 1.0])
