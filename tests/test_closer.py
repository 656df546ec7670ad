import time

from bidroom_closer import AuctionCloser
from conftest import ADMIN, ALICE


class ExplodingEngine:
    def close_expired(self):
        raise RuntimeError("boom")


def test_tick_closes_expired_items(engine) -> None:
    engine.set_global_times(ADMIN, start_at_iso=0, end_at_iso=500, now=0)
    closer = AuctionCloser(engine)

    assert sorted(closer.tick()) == ["X", "Y"]
    assert closer.tick() == []


def test_tick_survives_engine_errors() -> None:
    assert AuctionCloser(ExplodingEngine()).tick() == []


def test_background_thread_closes_items(setup, store, audit_log) -> None:
    from bidroom_engine import AuctionEngine

    engine = AuctionEngine(setup.registry, setup.catalog, store=store, audit_log=audit_log)
    engine.set_global_times(ADMIN, start_at_iso=0)
    engine.submit_bid("X", ALICE, 10)
    engine.set_item_times(ADMIN, "X", end_at_iso=1)

    closer = AuctionCloser(engine, tick_seconds=0.01)
    closer.start()
    try:
        deadline = time.time() + 5
        while not engine.get_item("X")["closed"] and time.time() < deadline:
            time.sleep(0.01)
    finally:
        closer.stop(timeout=2)

    assert engine.get_item("X")["closed"] is True
    assert engine.get_item("Y")["closed"] is False
    assert engine.remaining(ALICE) == 100
    assert not closer.running
