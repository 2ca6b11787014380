from __future__ import annotations

import pytest

from sidlak.scoring import format_points, points


def test_points_weights():
    """金1.0・銀0.20・銅0.04 の重みで合計する。"""

    assert points(0, 0, 0) == 0.0
    assert points(1, 0, 0) == 1.0
    assert points(0, 1, 0) == 0.2
    assert points(0, 0, 1) == 0.04
    assert points(2, 3, 4) == pytest.approx(2.76)


def test_points_dominance_boundaries():
    """銀4は金1に届かず、銀5で並ぶ。"""

    assert points(0, 4, 0) == 0.8
    assert points(0, 5, 0) == 1.0
    assert points(0, 5, 0) == points(1, 0, 0)
    for n in range(5):
        assert points(1, 0, 0) > points(0, n, n)


@pytest.mark.parametrize("base", [(0, 0, 0), (3, 1, 7), (12, 9, 40)])
def test_points_increment_per_medal(base):
    """メダル1個ごとの増分は他の個数によらず一定。"""

    g, s, b = base
    assert points(g + 1, s, b) - points(g, s, b) == pytest.approx(1.0)
    assert points(g, s + 1, b) - points(g, s, b) == pytest.approx(0.20)
    assert points(g, s, b + 1) - points(g, s, b) == pytest.approx(0.04)


def test_points_is_not_rounded():
    """表示用の丸めは format_points に任せる。"""

    assert points(0, 0, 1) == 0.04
    assert format_points(points(0, 0, 1)) == "0.04"
    assert format_points(points(1, 1, 0)) == "1.20"
    assert format_points(points(0, 0, 0)) == "0.00"
