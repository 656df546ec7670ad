# --- bidroom_ledger.py ---
"""Credit bookkeeping and the externally visible views of the auction.

Nothing here is stored: committed and remaining credits are recomputed from
the live items on every call, so closing an item frees its credits at once.
"""
import copy


def committed_credits(items, identity_key):
    """Sum of current bids on still-open items held by identity_key."""
    return sum(
        item["current_bid"] for item in items.values()
        if not item["closed"] and item["current_bidder"] == identity_key
    )


def remaining_credits(registry, items, identity_key):
    identity = registry.lookup(identity_key)
    if not identity:
        return 0
    return identity["credits"] - committed_credits(items, identity_key)


def won_credits(items, identity_key):
    return sum(
        item["current_bid"] for item in items.values()
        if item["closed"] and item["current_bidder"] == identity_key
    )


def build_users_view(registry, items):
    users = {}
    for key, identity in registry.items():
        users[key] = {
            "name": identity["name"],
            "credits": identity["credits"],
            "role": identity["role"],
            "remaining": remaining_credits(registry, items, key),
        }
    return users


def build_state_view(registry, items, settings, now):
    """Full snapshot pushed to every observer as the 'state' event."""
    return {
        "now": now,
        "settings": dict(settings),
        "users": build_users_view(registry, items),
        "players": copy.deepcopy(items),
    }


def build_hello(registry, items, identity_key):
    identity = registry.lookup(identity_key)
    return {
        "ip": identity_key,
        "recognized": identity is not None,
        "name": identity["name"] if identity else None,
        "credits": identity["credits"] if identity else 0,
        "remaining": remaining_credits(registry, items, identity_key) if identity else 0,
        "is_admin": registry.is_admin(identity_key),
    }
