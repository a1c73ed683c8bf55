import pytest

from card_search.utils import batched


def test_batched_splits_in_order():
    assert list(batched(range(5), 2)) == [[0, 1], [2, 3], [4]]


def test_batched_empty():
    assert list(batched([], 3)) == []


def test_batched_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(batched([1], 0))
