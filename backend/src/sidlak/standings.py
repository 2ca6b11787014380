from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from .domain import (
    MEDAL_TYPES,
    Department,
    DepartmentStanding,
    Event,
    MedalAward,
    MedalType,
    WinnerInfo,
)
from .scoring import points

logger = logging.getLogger(__name__)

PODIUM_SIZE = 3


def _countable_awards(
    awards: Iterable[MedalAward], departments_by_id: dict[str, Department]
) -> Iterable[MedalAward]:
    """集計対象になる受賞だけを入力順に返す。

    未知の学科を参照する受賞は捨てる。同じ (event_id, medal_type) が
    複数ある場合は最初の1件だけを採用する。
    """

    claimed: set[tuple[str, MedalType]] = set()
    for award in awards:
        if award.department_id not in departments_by_id:
            logger.debug(
                "ignoring award for unknown department %s (event %s)",
                award.department_id,
                award.event_id,
            )
            continue
        slot = (award.event_id, award.medal_type)
        if slot in claimed:
            logger.debug(
                "ignoring duplicate %s award for event %s (department %s)",
                award.medal_type,
                award.event_id,
                award.department_id,
            )
            continue
        claimed.add(slot)
        yield award


def tally_medals(
    awards: Iterable[MedalAward], departments: Sequence[Department]
) -> list[DepartmentStanding]:
    """学科ごとのメダル数と合計ポイントを返す（学科の入力順）。

    メダルのない学科も0件で含める。
    """

    departments_by_id = {d.id: d for d in departments}
    counts: dict[str, dict[MedalType, int]] = {
        d.id: {m: 0 for m in MEDAL_TYPES} for d in departments
    }

    for award in _countable_awards(awards, departments_by_id):
        counts[award.department_id][award.medal_type] += 1

    rows: list[DepartmentStanding] = []
    for dept_id, c in counts.items():
        dept = departments_by_id[dept_id]
        rows.append(
            DepartmentStanding(
                department_id=dept.id,
                name=dept.name,
                abbreviation=dept.abbreviation,
                image_url=dept.image_url,
                gold_count=c["gold"],
                silver_count=c["silver"],
                bronze_count=c["bronze"],
                total_points=points(c["gold"], c["silver"], c["bronze"]),
            )
        )
    return rows


def rank_standings(standings: Iterable[DepartmentStanding]) -> list[DepartmentStanding]:
    """ポイント降順に並べる。同点は学科名の昇順、さらに学科IDの昇順。"""

    return sorted(standings, key=lambda s: (-s.total_points, s.name, s.department_id))


def compute_standings(
    awards: Iterable[MedalAward], departments: Sequence[Department]
) -> list[DepartmentStanding]:
    return rank_standings(tally_medals(awards, departments))


def podium(ranking: Sequence[DepartmentStanding]) -> list[DepartmentStanding]:
    return list(ranking[:PODIUM_SIZE])


def group_by_event(
    awards: Iterable[MedalAward], departments: Sequence[Department]
) -> dict[str, dict[MedalType, WinnerInfo]]:
    """イベントごとに、メダル種別 -> 受賞学科 の対応を返す。

    受賞者のいないメダル種別はキー自体を持たない。
    """

    departments_by_id = {d.id: d for d in departments}
    grouped: dict[str, dict[MedalType, WinnerInfo]] = {}

    for award in _countable_awards(awards, departments_by_id):
        dept = departments_by_id[award.department_id]
        grouped.setdefault(award.event_id, {})[award.medal_type] = WinnerInfo(
            department_id=dept.id,
            name=dept.name,
            abbreviation=dept.abbreviation or "",
            image_url=dept.image_url,
        )

    return grouped


def select_awards(
    awards: Iterable[MedalAward],
    events: Sequence[Event],
    *,
    category: str | None = None,
    medal_type: MedalType | None = None,
    department_id: str | None = None,
) -> list[MedalAward]:
    """カテゴリ・メダル種別・学科で受賞を絞り込む。None は絞り込みなし。"""

    category_by_event = {e.id: e.category for e in events}
    selected: list[MedalAward] = []
    for award in awards:
        if category is not None and category_by_event.get(award.event_id) != category:
            continue
        if medal_type is not None and award.medal_type != medal_type:
            continue
        if department_id is not None and award.department_id != department_id:
            continue
        selected.append(award)
    return selected
