from typing import Dict, List, Tuple

from ..database import LedgerStore
from ..errors import NotFoundError
from ..models.ledger import HeadToHeadPage, HeadToHeadRecord, LedgerMatchup
from .labels import LabelResolver


def head_to_head_records(matchups: List[LedgerMatchup]) -> List[Tuple[int, int, Dict[str, float]]]:
    """
    Fold weekly matchup rows into per-pair records.

    Rows are paired by (week, matchup_id); weeks where a matchup does not
    have exactly two rosters (byes or median games) are skipped.
    Each pair is keyed with the lower roster id first. Missing points count
    as zero.
    """
    games: Dict[Tuple[int, int], List[LedgerMatchup]] = {}
    for m in matchups:
        if m.matchup_id is None:
            continue
        games.setdefault((m.week, m.matchup_id), []).append(m)

    records: Dict[Tuple[int, int], Dict[str, float]] = {}
    for rows in games.values():
        if len(rows) != 2:
            continue
        first, second = sorted(rows, key=lambda m: m.roster_id)
        if first.roster_id == second.roster_id:
            continue
        rec = records.setdefault(
            (first.roster_id, second.roster_id),
            {"games": 0, "wins_a": 0, "wins_b": 0, "ties": 0, "points_a": 0.0, "points_b": 0.0},
        )
        points_a = first.points or 0.0
        points_b = second.points or 0.0
        rec["games"] += 1
        rec["points_a"] += points_a
        rec["points_b"] += points_b
        if points_a > points_b:
            rec["wins_a"] += 1
        elif points_b > points_a:
            rec["wins_b"] += 1
        else:
            rec["ties"] += 1

    ordered = sorted(records.items(), key=lambda item: (-item[1]["games"], item[0]))
    return [(a, b, rec) for (a, b), rec in ordered]


async def get_head_to_head(store: LedgerStore, league_id: str) -> HeadToHeadPage:
    """Head-to-head records of one synced league-season, most-played pairs first."""
    league_season = await store.get_league_season(league_id)
    if league_season is None:
        raise NotFoundError(f"League {league_id} has not been synced")
    season = league_season.season

    matchups = await store.list_matchups(league_id, season)
    resolver = LabelResolver(store)
    await resolver.load([], {}, extra_pairs=((league_id, season),))

    records = [
        HeadToHeadRecord(
            roster_a=a,
            roster_b=b,
            team_a=resolver.roster_label(league_id, season, a),
            team_b=resolver.roster_label(league_id, season, b),
            games=int(rec["games"]),
            wins_a=int(rec["wins_a"]),
            wins_b=int(rec["wins_b"]),
            ties=int(rec["ties"]),
            points_a=round(rec["points_a"], 2),
            points_b=round(rec["points_b"], 2),
        )
        for a, b, rec in head_to_head_records(matchups)
    ]
    return HeadToHeadPage(league_id=league_id, season=season, records=records)
