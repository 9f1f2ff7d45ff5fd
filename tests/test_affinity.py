import os
from unittest import mock

from lwsclient.affinity import set_cpu_affinity


def test_minus_one_leaves_thread_unpinned():
    with mock.patch.object(os, "sched_setaffinity", create=True) as setter:
        assert set_cpu_affinity(-1) is None
    setter.assert_not_called()


def test_cpu_index_wraps_around_cpu_count():
    with mock.patch.object(os, "cpu_count", return_value=4), mock.patch.object(
        os, "sched_setaffinity", create=True
    ) as setter:
        assert set_cpu_affinity(6) == 2
    setter.assert_called_once_with(0, {2})


def test_failure_to_pin_returns_none():
    with mock.patch.object(os, "cpu_count", return_value=4), mock.patch.object(
        os, "sched_setaffinity", create=True, side_effect=OSError("denied")
    ):
        assert set_cpu_affinity(1) is None


def test_platform_without_affinity_support():
    with mock.patch.object(os, "sched_setaffinity", None, create=True):
        assert set_cpu_affinity(0) is None