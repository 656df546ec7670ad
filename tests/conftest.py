import pytest

from bidroom_catalog import IdentityRegistry, build_catalog, AuctionSetup
from bidroom_engine import AuctionEngine

ALICE = "10.0.0.1"
BOB = "10.0.0.2"
CARLA = "10.0.0.3"
ADMIN = "10.0.0.9"

USERS = [
    {"ip": ALICE, "name": "Alice", "credits": 100, "role": "user"},
    {"ip": BOB, "name": "Bob", "credits": 15},
    {"ip": CARLA, "name": "Carla", "credits": 50, "role": "guest"},
    {"ip": ADMIN, "name": "Admin", "credits": 0, "role": "admin"},
]
PLAYERS = [
    {"id": "X", "name": "Player X", "team": "Alpha", "base": 1},
    {"id": "Y", "name": "Player Y", "team": "Bravo", "base": 5},
]


class RecordingStore:
    """In-memory AuctionStore stand-in that remembers every snapshot."""

    def __init__(self, snapshot=None):
        self.snapshot = snapshot
        self.saves = []
        self.degraded = False
        self.state_filepath = "<memory>"

    def load(self):
        return self.snapshot

    def save(self, snapshot):
        self.saves.append(snapshot)
        self.snapshot = snapshot
        return True


class RecordingAuditLog:
    def __init__(self):
        self.bids = []
        self.closes = []
        self.events = []
        self.degraded = False

    def record_bid(self, item, entry):
        self.bids.append((item["id"], dict(entry)))

    def record_close(self, item, winner_key, winner_name, ts):
        self.closes.append((item["id"], winner_key, winner_name, item["current_bid"], ts))

    def record_auction_event(self, event, ts, **fields):
        self.events.append((event, ts, fields))


@pytest.fixture
def setup():
    return AuctionSetup("Test Auction", IdentityRegistry(USERS), build_catalog(PLAYERS))


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def audit_log():
    return RecordingAuditLog()


@pytest.fixture
def engine(setup, store, audit_log):
    return AuctionEngine(setup.registry, setup.catalog, store=store, audit_log=audit_log,
                         auction_name=setup.auction_name, clock=lambda: 1_000)


@pytest.fixture
def broadcasts(engine):
    received = []
    engine.add_listener(lambda event, payload: received.append((event, payload)))
    return received


@pytest.fixture
def open_engine(engine):
    """Engine whose auction started at t=0 with no deadline."""
    engine.set_global_times(ADMIN, start_at_iso=0, now=0)
    return engine
