from bidroom_catalog import IdentityRegistry
from bidroom_ledger import (
    committed_credits, remaining_credits, won_credits, build_state_view, build_hello,
)


def _item(item_id, bid, bidder, closed=False):
    return {"id": item_id, "name": item_id, "team": "", "base_price": 1, "current_bid": bid,
            "current_bidder": bidder, "history": [], "deadline": None,
            "extend_on_bid_seconds": None, "deadline_pinned": False, "closed": closed}


REGISTRY = IdentityRegistry([
    {"ip": "a", "name": "A", "credits": 100},
    {"ip": "b", "name": "B", "credits": 40, "role": "admin"},
])
ITEMS = {
    "1": _item("1", 30, "a"),
    "2": _item("2", 25, "a", closed=True),
    "3": _item("3", 10, "b"),
    "4": _item("4", 5, None),
}


def test_committed_counts_open_items_only() -> None:
    assert committed_credits(ITEMS, "a") == 30
    assert committed_credits(ITEMS, "b") == 10
    assert committed_credits(ITEMS, "nobody") == 0


def test_remaining_and_won() -> None:
    assert remaining_credits(REGISTRY, ITEMS, "a") == 70
    assert remaining_credits(REGISTRY, ITEMS, "b") == 30
    assert remaining_credits(REGISTRY, ITEMS, "nobody") == 0
    assert won_credits(ITEMS, "a") == 25


def test_state_view_is_a_copy() -> None:
    settings = {"start_at": 1, "end_at": None, "extend_on_bid_seconds": 30}
    view = build_state_view(REGISTRY, ITEMS, settings, now=123)

    assert view["now"] == 123
    assert view["settings"] == settings
    assert view["users"]["a"] == {"name": "A", "credits": 100, "role": "user", "remaining": 70}
    view["players"]["1"]["current_bid"] = 999
    assert ITEMS["1"]["current_bid"] == 30


def test_hello_for_known_and_unknown_callers() -> None:
    assert build_hello(REGISTRY, ITEMS, "b") == {
        "ip": "b", "recognized": True, "name": "B", "credits": 40, "remaining": 30, "is_admin": True,
    }
    assert build_hello(REGISTRY, ITEMS, "zz") == {
        "ip": "zz", "recognized": False, "name": None, "credits": 0, "remaining": 0, "is_admin": False,
    }
