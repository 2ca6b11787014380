from __future__ import annotations

GOLD_WEIGHT = 1.0
SILVER_WEIGHT = 0.20
BRONZE_WEIGHT = 0.04

# 重みを1/25単位の整数で持つ（1.0=25, 0.20=5, 0.04=1）
_UNITS_PER_POINT = 25
_GOLD_UNITS = round(GOLD_WEIGHT * _UNITS_PER_POINT)
_SILVER_UNITS = round(SILVER_WEIGHT * _UNITS_PER_POINT)
_BRONZE_UNITS = round(BRONZE_WEIGHT * _UNITS_PER_POINT)


def points(gold_count: int, silver_count: int, bronze_count: int) -> float:
    """メダル数から合計ポイントを返す。

    gold*1.0 + silver*0.20 + bronze*0.04。丸めは行わない。
    整数で合算してから一度だけ割るので、同じ値になる組み合わせ
    （例: 金1 と 銀5）は完全に等しい float になる。
    """

    units = gold_count * _GOLD_UNITS + silver_count * _SILVER_UNITS + bronze_count * _BRONZE_UNITS
    return units / _UNITS_PER_POINT


def format_points(value: float) -> str:
    return f"{value:.2f}"
