import csv
import json

from bidroom_storage import AuctionStore, AuditLog, iso_from_ms, slugify, BID_CSV_HEADER


ITEM = {"id": "7", "name": "Francesco Totti!", "team": "Roma", "current_bid": 40}


def test_store_round_trip(tmp_path) -> None:
    store = AuctionStore(str(tmp_path))
    assert store.load() is None

    assert store.save({"players": {"7": {"current_bid": 40}}}) is True

    assert store.load() == {"players": {"7": {"current_bid": 40}}}
    assert not store.degraded
    assert [p.name for p in tmp_path.iterdir()] == ["state.json"]


def test_store_ignores_corrupt_snapshot(tmp_path) -> None:
    (tmp_path / "state.json").write_text("{not json")
    assert AuctionStore(str(tmp_path)).load() is None


def test_store_write_failure_is_degraded_not_fatal(tmp_path) -> None:
    blocker = tmp_path / "data"
    blocker.write_text("a file where the data dir should be")
    store = AuctionStore(str(blocker))

    assert store.save({"a": 1}) is False
    assert store.degraded is True


def test_store_recovers_from_degraded_mode(tmp_path) -> None:
    store = AuctionStore(str(tmp_path))
    store.degraded = True
    assert store.save({"a": 1}) is True
    assert store.degraded is False


def test_audit_log_records_bids(tmp_path) -> None:
    audit_log = AuditLog(str(tmp_path))
    audit_log.record_bid(ITEM, {"ts": 0, "bidder": "1.1.1.1", "bidder_name": "Ann", "amount": 40})
    audit_log.record_bid(ITEM, {"ts": 1_000, "bidder": "2.2.2.2", "bidder_name": "Ben", "amount": 41})

    with open(audit_log.item_csv_path(ITEM), newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == BID_CSV_HEADER
    assert rows[1] == ["1970-01-01T00:00:00.000Z", "0", "7", "Francesco Totti!", "Roma", "1.1.1.1", "Ann", "40"]
    assert len(rows) == 3

    with open(audit_log.item_jsonl_path(ITEM), encoding="utf-8") as f:
        events = [json.loads(line) for line in f]
    assert [e["event"] for e in events] == ["bid", "bid"]
    assert events[1]["bidder_name"] == "Ben"
    assert audit_log.item_csv_path(ITEM).endswith("7-francesco-totti.csv")


def test_audit_log_records_closures_and_admin_events(tmp_path) -> None:
    audit_log = AuditLog(str(tmp_path))
    audit_log.record_close(ITEM, "1.1.1.1", "Ann", 5_000)
    audit_log.record_auction_event("admin_settings", 6_000, admin_ip="9.9.9.9", extend_on_bid_seconds=30)

    with open(audit_log.item_jsonl_path(ITEM), encoding="utf-8") as f:
        close = json.loads(f.readline())
    assert close["event"] == "close"
    assert close["winner_ip"] == "1.1.1.1"
    assert close["final_amount"] == 40

    with open(audit_log.auction_log_filepath, encoding="utf-8") as f:
        admin = json.loads(f.readline())
    assert admin["event"] == "admin_settings"
    assert admin["extend_on_bid_seconds"] == 30
    assert admin["ts_iso"] == "1970-01-01T00:00:06.000Z"


def test_audit_log_failure_is_swallowed(tmp_path) -> None:
    blocker = tmp_path / "logs"
    blocker.write_text("not a directory")
    audit_log = AuditLog(str(blocker))

    assert audit_log.record_close(ITEM, None, None, 0) is False
    assert audit_log.degraded is True


def test_helpers() -> None:
    assert slugify("  Del Piero (JUV) ") == "del-piero-juv"
    assert iso_from_ms(1_893_456_000_000) == "2030-01-01T00:00:00.000Z"
