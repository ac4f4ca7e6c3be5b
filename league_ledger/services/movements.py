from typing import Any, Dict, List, Optional

from ..models.ledger import AssetMovement


def to_int(value: Any) -> Optional[int]:
    """Lenient int coercion for Sleeper's mix of ints and numeric strings."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            as_float = float(value)
        except (TypeError, ValueError):
            return None
        return int(as_float) if as_float.is_integer() else None


def _first_int(entry: Dict[str, Any], *fields: str) -> Optional[int]:
    for field in fields:
        value = to_int(entry.get(field))
        if value is not None:
            return value
    return None


def derive_movements(raw: Dict[str, Any]) -> List[AssetMovement]:
    """
    Normalize one raw Sleeper transaction into asset movements.

    - Players: one movement per id in adds ∪ drops, from = drops[id],
      to = adds[id]; an id in both maps is a single from -> to move.
    - Picks: one movement per draft_picks entry, from previous_owner_id
      (else previous_owner_roster_id) to owner_id (else roster_id).
    - FAAB: each complete {from, to, amount} entry of waiver_budget; without
      one, a waiver bid in settings becomes a single unattributed amount.

    Transactions carrying none of these fields yield an empty list.
    """
    movements: List[AssetMovement] = []

    adds = raw.get("adds") or {}
    drops = raw.get("drops") or {}
    if not isinstance(adds, dict):
        adds = {}
    if not isinstance(drops, dict):
        drops = {}

    for player_id in list(dict.fromkeys([*adds.keys(), *drops.keys()])):
        movements.append(AssetMovement(
            kind="player",
            player_id=str(player_id),
            from_roster_id=to_int(drops.get(player_id)),
            to_roster_id=to_int(adds.get(player_id)),
        ))

    draft_picks = raw.get("draft_picks") or []
    if isinstance(draft_picks, list):
        for pick in draft_picks:
            if not isinstance(pick, dict):
                continue
            movements.append(AssetMovement(
                kind="pick",
                pick_season=to_int(pick.get("season")),
                pick_round=to_int(pick.get("round")),
                from_roster_id=_first_int(pick, "previous_owner_id", "previous_owner_roster_id"),
                to_roster_id=_first_int(pick, "owner_id", "roster_id"),
            ))

    structured_faab = False
    waiver_budget = raw.get("waiver_budget") or []
    if isinstance(waiver_budget, list):
        for entry in waiver_budget:
            if not isinstance(entry, dict):
                continue
            sender = to_int(entry.get("sender", entry.get("from")))
            receiver = to_int(entry.get("receiver", entry.get("to")))
            amount = to_int(entry.get("amount"))
            if sender is None or receiver is None or amount is None:
                continue
            structured_faab = True
            movements.append(AssetMovement(
                kind="faab",
                faab_amount=amount,
                from_roster_id=sender,
                to_roster_id=receiver,
            ))

    settings = raw.get("settings")
    if not structured_faab and isinstance(settings, dict):
        bid = to_int(settings.get("waiver_bid"))
        if bid is not None:
            movements.append(AssetMovement(kind="faab", faab_amount=bid))

    return movements
