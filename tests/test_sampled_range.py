import numpy as np
import pytest

from sampled_range import (
    format_duration,
    gap_range,
    interpolate_int,
    length_range,
)


def test_degenerate_range_is_constant():
    rng = np.random.default_rng(1)
    r = length_range(7)
    assert not r.is_range
    assert all(r.sample(rng) == 7 for _ in range(1000))

    g = gap_range(0.25)
    assert all(g.sample(rng) == 0.25 for _ in range(1000))


def test_int_range_covers_both_endpoints():
    rng = np.random.default_rng(2)
    r = length_range(3, 9)
    values = [r.sample(rng) for _ in range(10000)]
    assert min(values) == 3
    assert max(values) == 9
    assert set(values) == set(range(3, 10))


def test_interpolate_int_edges():
    assert interpolate_int(0, 4, 0.0) == 0
    assert interpolate_int(0, 4, 0.999999) == 4
    assert interpolate_int(10, 10, 0.5) == 10


def test_duration_range_stays_inside_and_converges():
    rng = np.random.default_rng(3)
    g = gap_range(0.010, 0.050)
    values = [g.sample(rng) for _ in range(10000)]
    assert all(0.010 <= v <= 0.050 for v in values)
    assert min(values) < 0.0105
    assert max(values) > 0.0495


def test_inverted_range_rejected():
    with pytest.raises(ValueError):
        length_range(5, 2)


def test_describe():
    assert length_range(4).describe() == "4"
    assert length_range(4, 16).describe() == "4 to 16"
    assert gap_range(0.01, 1.5).describe(format_duration) == "10ms to 1.5s"


@pytest.mark.parametrize(
    "seconds, text",
    [
        (0.0000125, "12.5µs"),
        (0.0005, "500µs"),
        (0.001, "1ms"),
        (0.25, "250ms"),
        (0.0123456, "12.346ms"),
        (0.0009999996, "1ms"),
        (0.9999996, "1s"),
        (1.0, "1s"),
        (1.25, "1.25s"),
        (3600.0, "3,600s"),
    ],
)
def test_format_duration(seconds, text):
    assert format_duration(seconds) == text
