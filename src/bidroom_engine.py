# --- bidroom_engine.py ---
import copy
import math
import time
import logging
import threading
from collections import namedtuple
from datetime import datetime

from bidroom_catalog import IdentityRegistry, build_catalog, DEFAULT_AUCTION_NAME
from bidroom_ledger import (
    committed_credits, remaining_credits, build_state_view, build_hello,
)

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1

# Event names pushed to every observer
EVENT_STATE = "state"
EVENT_BID = "event:bid"

BidResult = namedtuple("BidResult", ["item", "remaining"])


class AuctionError(Exception):
    """Base class for auction-specific rejections. Reported to the caller only."""
    code = "AuctionError"

class UnknownIdentityError(AuctionError):
    code = "UnknownIdentity"

class UnknownItemError(AuctionError):
    code = "UnknownItem"

class InvalidAmountError(AuctionError):
    code = "InvalidAmount"

class AuctionNotOpenError(AuctionError):
    code = "AuctionNotOpen"

class AuctionClosedError(AuctionError):
    code = "AuctionClosed"

class DuplicateBidderError(AuctionError):
    code = "DuplicateBidder"

class BidTooLowError(AuctionError):
    code = "BidTooLow"

class InsufficientCreditsError(AuctionError):
    code = "InsufficientCredits"

class PermissionDeniedError(AuctionError):
    code = "PermissionDenied"

class InvalidWindowError(AuctionError):
    code = "InvalidWindow"

class InvalidExtendError(AuctionError):
    code = "InvalidExtend"


def now_ms():
    return int(time.time() * 1000)


def default_settings():
    return {"start_at": None, "end_at": None, "extend_on_bid_seconds": 0}


def new_item(entry):
    return {
        "id": entry["id"],
        "name": entry["name"],
        "team": entry.get("team") or "",
        "base_price": entry["base"],
        "current_bid": entry["base"],
        "current_bidder": None,
        "history": [],
        "deadline": None,
        "extend_on_bid_seconds": None,
        "deadline_pinned": False,
        "closed": False,
    }


def parse_iso_ms(value):
    """ISO-8601 text (or epoch milliseconds) -> epoch milliseconds. Naive times are local."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise InvalidWindowError(f"Invalid date: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise InvalidWindowError(f"Invalid date: {value!r}")
        return int(value)
    text = str(value).strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    try:
        return int(datetime.fromisoformat(text).timestamp() * 1000)
    except (ValueError, OverflowError, OSError):
        raise InvalidWindowError(f"Invalid date: {value!r}")


def parse_extend_seconds(value, allow_none=False):
    if value is None or value == "":
        return None if allow_none else 0
    if isinstance(value, bool):
        raise InvalidExtendError("Invalid rolling timer: expected a number of seconds.")
    try:
        seconds = float(value)
    except (TypeError, ValueError, OverflowError):
        raise InvalidExtendError(f"Invalid rolling timer: {value!r}")
    if not math.isfinite(seconds) or seconds < 0 or not seconds.is_integer():
        raise InvalidExtendError(f"Invalid rolling timer: {value!r} (whole seconds >= 0 required).")
    return int(seconds)


def parse_bid_amount(value):
    if isinstance(value, bool) or value is None:
        raise InvalidAmountError("Invalid amount.")
    try:
        amount = float(value)
    except (TypeError, ValueError, OverflowError):
        raise InvalidAmountError("Invalid amount.")
    if not math.isfinite(amount) or amount <= 0 or not amount.is_integer():
        raise InvalidAmountError("Invalid amount.")
    return int(amount)


class AuctionEngine:
    """Authoritative auction state.

    Every read and mutation runs under one re-entrant lock. Accepted
    mutations are audited and persisted inside the lock; broadcasts go out
    to listeners once the lock is released.
    """

    def __init__(self, registry, catalog, store=None, audit_log=None,
                 auction_name=DEFAULT_AUCTION_NAME, clock=None):
        self.auction_name = auction_name
        self.registry = registry
        self.items = {item_id: new_item(entry) for item_id, entry in catalog.items()}
        self.settings = default_settings()
        self.store = store
        self.audit_log = audit_log
        self._clock = clock or now_ms
        self._lock = threading.RLock()
        self._listeners = []

    # --- Construction / persistence ---

    @classmethod
    def from_setup(cls, setup, store=None, audit_log=None, clock=None):
        """Builds the engine from the setup catalogs, restoring the stored snapshot if any."""
        snapshot = store.load() if store else None
        if snapshot:
            logger.info("Restoring auction state from %s", store.state_filepath)
            return cls.from_snapshot(snapshot, setup=setup, store=store, audit_log=audit_log, clock=clock)
        return cls(setup.registry, setup.catalog, store=store, audit_log=audit_log,
                   auction_name=setup.auction_name, clock=clock)

    @classmethod
    def from_snapshot(cls, snapshot, setup=None, store=None, audit_log=None, clock=None):
        snapshot = _normalize_snapshot(snapshot, setup.catalog if setup is not None else None)
        users = dict(snapshot["users"])
        catalog = {}
        auction_name = snapshot.get("auction_name") or DEFAULT_AUCTION_NAME
        if setup is not None:
            # Snapshot wins; the catalogs only contribute entries it does not know about
            for key, identity in setup.registry.items():
                users.setdefault(key, dict(identity))
            catalog = {k: v for k, v in setup.catalog.items() if k not in snapshot["players"]}
            if not snapshot.get("auction_name"):
                auction_name = setup.auction_name
        registry = IdentityRegistry([dict(identity, ip=key) for key, identity in users.items()])
        engine = cls(registry, build_catalog(catalog.values()), store=store, audit_log=audit_log,
                     auction_name=auction_name, clock=clock)
        for item_id, item in snapshot["players"].items():
            engine.items[item_id] = item
        engine.settings.update(snapshot["auction_settings"])
        return engine

    def to_snapshot(self):
        with self._lock:
            return {
                "version": SNAPSHOT_VERSION,
                "auction_name": self.auction_name,
                "users": self.registry.to_dict(),
                "players": copy.deepcopy(self.items),
                "auction_settings": dict(self.settings),
            }

    def _persist(self):
        if self.store:
            self.store.save(self.to_snapshot())

    @property
    def degraded(self):
        return bool((self.store and self.store.degraded) or (self.audit_log and self.audit_log.degraded))

    # --- Broadcast ---

    def add_listener(self, callback):
        """callback(event_name, payload) is called after every accepted mutation."""
        self._listeners.append(callback)

    def _broadcast(self, events):
        for event, payload in events:
            for listener in list(self._listeners):
                try:
                    listener(event, payload)
                except Exception:
                    logger.exception("Broadcast of '%s' failed", event)

    def _now(self, now):
        return self._clock() if now is None else now

    # --- Ledger / projections ---

    def committed(self, identity_key):
        with self._lock:
            return committed_credits(self.items, identity_key)

    def remaining(self, identity_key):
        with self._lock:
            return remaining_credits(self.registry, self.items, identity_key)

    def state_view(self, now=None):
        with self._lock:
            return build_state_view(self.registry, self.items, self.settings, self._now(now))

    def hello(self, identity_key):
        with self._lock:
            return build_hello(self.registry, self.items, identity_key)

    def get_item(self, item_id):
        with self._lock:
            item = self.items.get(str(item_id))
            return copy.deepcopy(item) if item else None

    # --- Timing ---

    def effective_extend_seconds(self, item):
        if item["extend_on_bid_seconds"] is not None:
            return item["extend_on_bid_seconds"]
        return self.settings["extend_on_bid_seconds"]

    def effective_deadline(self, item):
        if item["deadline"] is not None:
            return item["deadline"]
        return self.settings["end_at"]

    def try_close(self, item, now):
        """Closes an open item whose deadline has passed. Returns True only on that transition."""
        if item["closed"]:
            return False
        deadline = self.effective_deadline(item)
        if deadline is None or deadline > now:
            return False
        item["closed"] = True
        winner_key = item["current_bidder"]
        winner = self.registry.lookup(winner_key) if winner_key else None
        winner_name = winner["name"] if winner else None
        logger.info("Closed %s (%s): winner=%s final=%s", item["id"], item["name"], winner_name, item["current_bid"])
        if self.audit_log:
            self.audit_log.record_close(item, winner_key, winner_name, now)
        return True

    def close_expired(self, now=None):
        """One sweep of the closer. All closures share one snapshot write and one broadcast."""
        events = []
        try:
            with self._lock:
                now = self._now(now)
                closed_ids = [item_id for item_id, item in self.items.items() if self.try_close(item, now)]
                if closed_ids:
                    self._persist()
                    events.append((EVENT_STATE, self.state_view(now)))
        finally:
            self._broadcast(events)
        return closed_ids

    # --- Bidding ---

    def submit_bid(self, item_id, identity_key, amount, now=None):
        events = []
        try:
            with self._lock:
                now = self._now(now)
                return self._place_bid(str(item_id), identity_key, amount, now, events)
        finally:
            self._broadcast(events)

    def _place_bid(self, item_id, identity_key, amount, now, events):
        bidder = self.registry.lookup(identity_key)
        if not bidder:
            raise UnknownIdentityError("You are not recognized: address not registered.")
        item = self.items.get(item_id)
        if item is None:
            raise UnknownItemError(f"Unknown player '{item_id}'.")
        value = parse_bid_amount(amount)
        start_at = self.settings["start_at"]
        if start_at is None or now < start_at:
            raise AuctionNotOpenError("The auction has not started yet.")
        if item["closed"]:
            raise AuctionClosedError(f"Bidding on {item['name']} is over.")
        if self.try_close(item, now):
            self._persist()
            events.append((EVENT_STATE, self.state_view(now)))
            raise AuctionClosedError(f"Bidding on {item['name']} is over.")
        if item["current_bidder"] == identity_key:
            raise DuplicateBidderError("You cannot outbid your own last bid.")
        if value <= item["current_bid"]:
            raise BidTooLowError(f"The bid must be greater than {item['current_bid']}.")
        remaining = remaining_credits(self.registry, self.items, identity_key)
        if value > remaining:
            raise InsufficientCreditsError(f"Bid exceeds your remaining credits ({remaining}).")

        entry = {"ts": now, "bidder": identity_key, "bidder_name": bidder["name"], "amount": value}
        item["current_bid"] = value
        item["current_bidder"] = identity_key
        item["history"].append(entry)
        extend_seconds = self.effective_extend_seconds(item)
        if extend_seconds > 0:
            item["deadline"] = now + extend_seconds * 1000

        logger.info("Bid %s on %s by %s (%s)", value, item["id"], bidder["name"], identity_key)
        if self.audit_log:
            self.audit_log.record_bid(item, entry)
        self._persist()

        events.append((EVENT_BID, {
            "item_id": item["id"],
            "item_name": item["name"],
            "amount": value,
            "bidder": identity_key,
            "bidder_name": bidder["name"],
            "ts": now,
        }))
        events.append((EVENT_STATE, self.state_view(now)))
        return BidResult(copy.deepcopy(item), remaining_credits(self.registry, self.items, identity_key))

    # --- Admin controls ---

    def _require_admin(self, identity_key):
        if not self.registry.is_admin(identity_key):
            raise PermissionDeniedError("Permission denied (admin only).")

    def set_global_times(self, acting_key, start_at_iso=None, end_at_iso=None, extend_on_bid_seconds=0, now=None):
        events = []
        try:
            with self._lock:
                now = self._now(now)
                self._require_admin(acting_key)
                start = parse_iso_ms(start_at_iso)
                end = parse_iso_ms(end_at_iso)
                if start is not None and end is not None and end <= start:
                    raise InvalidWindowError("The end must come after the start.")
                extend = parse_extend_seconds(extend_on_bid_seconds)

                self.settings = {
                    "start_at": start,
                    # rolling mode has no fixed global end
                    "end_at": None if extend > 0 else end,
                    "extend_on_bid_seconds": extend,
                }
                if extend == 0:
                    for item in self.items.values():
                        if item["closed"] or item["deadline_pinned"] or item["extend_on_bid_seconds"] is not None:
                            continue
                        item["deadline"] = self.settings["end_at"]

                logger.info("Global times set by %s: %s", acting_key, self.settings)
                if self.audit_log:
                    self.audit_log.record_auction_event(
                        "admin_settings", now, admin_ip=acting_key, start_at=start,
                        end_at=self.settings["end_at"], extend_on_bid_seconds=extend,
                    )
                self._persist()
                events.append((EVENT_STATE, self.state_view(now)))
                return dict(self.settings)
        finally:
            self._broadcast(events)

    def set_item_times(self, acting_key, item_id, end_at_iso=None, extend_on_bid_seconds=None, now=None):
        events = []
        try:
            with self._lock:
                now = self._now(now)
                self._require_admin(acting_key)
                item = self.items.get(str(item_id))
                if item is None:
                    raise UnknownItemError(f"Unknown player '{item_id}'.")
                end = parse_iso_ms(end_at_iso)
                extend = parse_extend_seconds(extend_on_bid_seconds, allow_none=True)
                if item["closed"]:
                    raise AuctionClosedError(f"Bidding on {item['name']} is over.")

                item["extend_on_bid_seconds"] = extend
                item["deadline_pinned"] = end is not None
                if end is not None:
                    item["deadline"] = end
                elif self.effective_extend_seconds(item) == 0:
                    # inherit the global end through effective_deadline
                    item["deadline"] = None

                logger.info("Times for %s set by %s: deadline=%s extend=%s", item["id"], acting_key, item["deadline"], extend)
                if self.audit_log:
                    self.audit_log.record_auction_event(
                        "admin_player_times", now, admin_ip=acting_key, player_id=item["id"],
                        end_at=item["deadline"], extend_on_bid_seconds=extend,
                    )
                self._persist()
                events.append((EVENT_STATE, self.state_view(now)))
                return copy.deepcopy(item)
        finally:
            self._broadcast(events)


# --- Snapshot compatibility ---

_LEGACY_ITEM_KEYS = {
    "currentBid": "current_bid",
    "currentBidderIp": "current_bidder",
    "endAt": "deadline",
    "extendOnBidSeconds": "extend_on_bid_seconds",
    "basePrice": "base_price",
}
_LEGACY_SETTINGS_KEYS = {
    "startAt": "start_at",
    "endAt": "end_at",
    "extendOnBidSeconds": "extend_on_bid_seconds",
}


def _normalize_history_entry(entry):
    return {
        "ts": entry.get("ts"),
        "bidder": entry.get("bidder", entry.get("ip")),
        "bidder_name": entry.get("bidder_name", entry.get("name")),
        "amount": entry.get("amount"),
    }


def _normalize_item(item_id, raw, catalog_entry=None):
    item = {_LEGACY_ITEM_KEYS.get(k, k): v for k, v in raw.items()}
    history = [_normalize_history_entry(e) for e in item.get("history") or []]
    current_bid = item.get("current_bid")
    base_price = item.get("base_price")
    if base_price is None and catalog_entry:
        base_price = catalog_entry["base"]
    if base_price is None:
        # Older snapshots never stored the base; an unbid item still sits on it
        base_price = history[0]["amount"] if history else current_bid
    return {
        "id": str(item.get("id", item_id)),
        "name": item.get("name") or str(item_id),
        "team": item.get("team") or "",
        "base_price": base_price if base_price is not None else 1,
        "current_bid": current_bid if current_bid is not None else (base_price or 1),
        "current_bidder": item.get("current_bidder"),
        "history": history,
        "deadline": item.get("deadline"),
        "extend_on_bid_seconds": item.get("extend_on_bid_seconds"),
        "deadline_pinned": bool(item.get("deadline_pinned", False)),
        "closed": bool(item.get("closed", False)),
    }


def _normalize_snapshot(snapshot, catalog=None):
    raw_settings = snapshot.get("auction_settings", snapshot.get("auctionSettings")) or {}
    settings = default_settings()
    settings.update({_LEGACY_SETTINGS_KEYS.get(k, k): v for k, v in raw_settings.items()})
    settings["extend_on_bid_seconds"] = settings["extend_on_bid_seconds"] or 0
    catalog = catalog or {}
    players = {
        str(k): _normalize_item(k, v, catalog.get(str(k)))
        for k, v in (snapshot.get("players") or {}).items()
    }
    return {
        "auction_name": snapshot.get("auction_name"),
        "users": snapshot.get("users") or {},
        "players": players,
        "auction_settings": settings,
    }
