"""
Tests for the K-fold and test-set segment generators.
"""

import numpy as np
import pytest

from localpls.exceptions import DimensionError
from localpls.segments import segm_kf, segm_ts


def test_kfold_partitions_indices():
    segm = segm_kf(10, 3, rep=2, random_state=42)
    assert len(segm) == 2
    for listsegm in segm:
        assert len(listsegm) == 3
        assert sorted(s.size for s in listsegm) == [3, 3, 4]
        np.testing.assert_array_equal(np.sort(np.concatenate(listsegm)), np.arange(10))
        for s in listsegm:
            np.testing.assert_array_equal(s, np.sort(s))


def test_kfold_is_reproducible_with_a_seed():
    first = segm_kf(10, 3, rep=2, random_state=42)
    second = segm_kf(10, 3, rep=2, random_state=42)
    for listsegm_1, listsegm_2 in zip(first, second):
        for s1, s2 in zip(listsegm_1, listsegm_2):
            np.testing.assert_array_equal(s1, s2)


@pytest.mark.parametrize("n, K", [(7, 7), (23, 5), (100, 1), (101, 10)])
def test_kfold_sizes_differ_by_at_most_one(n, K):
    for listsegm in segm_kf(n, K, rep=3, random_state=0):
        sizes = [s.size for s in listsegm]
        assert max(sizes) - min(sizes) <= 1
        assert sum(sizes) == n


def test_kfold_invalid_k():
    with pytest.raises(ValueError):
        segm_kf(5, 6)
    with pytest.raises(ValueError):
        segm_kf(5, 0)


def test_kfold_never_splits_groups():
    rng = np.random.default_rng(42)
    group = rng.integers(0, 8, 60)
    for listsegm in segm_kf(60, 3, rep=4, group=group, random_state=42):
        np.testing.assert_array_equal(np.sort(np.concatenate(listsegm)), np.arange(60))
        seen = {}
        for j, s in enumerate(listsegm):
            for g in np.unique(group[s]):
                assert seen.setdefault(g, j) == j
        for g in np.unique(group):
            members = np.flatnonzero(group == g)
            assert any(np.isin(members, s).all() for s in listsegm)


def test_kfold_caps_k_at_the_number_of_groups():
    group = np.repeat(["a", "b"], 5)
    segm = segm_kf(10, 4, group=group, random_state=0)
    assert len(segm[0]) == 2


def test_group_length_mismatch():
    with pytest.raises(DimensionError):
        segm_kf(10, 2, group=np.arange(9))
    with pytest.raises(DimensionError):
        segm_ts(10, 2, group=np.arange(9))


def test_test_set_segments():
    segm = segm_ts(20, 5, rep=3, random_state=42)
    assert len(segm) == 3
    for listsegm in segm:
        assert len(listsegm) == 1
        s = listsegm[0]
        assert s.size == 5
        assert np.unique(s).size == 5
        np.testing.assert_array_equal(s, np.sort(s))
        assert s.min() >= 0 and s.max() < 20


def test_test_set_segments_sample_whole_groups():
    group = np.repeat(np.arange(6), 3)
    for listsegm in segm_ts(18, 2, rep=5, group=group, random_state=42):
        s = listsegm[0]
        assert s.size == 6
        assert np.unique(group[s]).size == 2
