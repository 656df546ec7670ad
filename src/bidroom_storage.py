# --- bidroom_storage.py ---
import os
import re
import csv
import json
import logging
import tempfile
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

STATE_FILE_NAME = "state.json"
AUCTION_LOG_FILE_NAME = "auction.jsonl"
BID_CSV_HEADER = ["ts_iso", "ts_epoch", "player_id", "player_name", "player_team", "bidder_ip", "bidder_name", "amount"]


def iso_from_ms(ts_ms):
    stamp = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def slugify(text):
    return re.sub(r'[^a-z0-9]+', '-', str(text).lower()).strip('-')


class AuctionStore:
    """Full-snapshot persistence: load once at start, overwrite on every mutation.

    Write failures are logged and swallowed so the auction stays live;
    `degraded` tells whether the last write failed.
    """

    def __init__(self, data_dir, file_name=STATE_FILE_NAME):
        self.data_dir = data_dir
        self.state_filepath = os.path.join(data_dir, file_name)
        self.degraded = False

    def load(self):
        if not os.path.exists(self.state_filepath):
            return None
        try:
            with open(self.state_filepath, 'r', encoding='utf-8') as f:
                snapshot = json.load(f)
        except (IOError, json.JSONDecodeError) as e:
            logger.error("Cannot read state snapshot %s, starting from catalogs: %s", self.state_filepath, e)
            return None
        if not isinstance(snapshot, dict):
            logger.error("State snapshot %s is not a JSON object, ignoring it.", self.state_filepath)
            return None
        return snapshot

    def save(self, snapshot):
        tmp_path = None
        try:
            payload = json.dumps(snapshot, indent=2)
            os.makedirs(self.data_dir, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".state-", suffix=".tmp", dir=self.data_dir)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(payload)
            os.replace(tmp_path, self.state_filepath)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            self.degraded = True
            logger.warning("DEGRADED: state snapshot not persisted to %s: %s", self.state_filepath, e)
            return False
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try: os.remove(tmp_path)
                except OSError: pass
        if self.degraded:
            logger.info("State snapshot writes to %s recovered.", self.state_filepath)
        self.degraded = False
        return True


class AuditLog:
    """Append-only audit trail.

    Per item: <id>-<slug>.csv with one row per accepted bid and
    <id>-<slug>.jsonl with bid and close events. Auction-wide events
    (admin changes) go to auction.jsonl.
    """

    def __init__(self, log_dir):
        self.log_dir = log_dir
        self.auction_log_filepath = os.path.join(log_dir, AUCTION_LOG_FILE_NAME)
        self.degraded = False

    def _item_base_path(self, item):
        return os.path.join(self.log_dir, f"{item['id']}-{slugify(item.get('name') or 'player')}")

    def item_csv_path(self, item):
        return self._item_base_path(item) + ".csv"

    def item_jsonl_path(self, item):
        return self._item_base_path(item) + ".jsonl"

    def _append_csv_row(self, file_path, header, values):
        exists = os.path.exists(file_path)
        with open(file_path, 'a', newline='', encoding='utf-8') as f:
            writer = csv.writer(f)
            if not exists:
                writer.writerow(header)
            writer.writerow(values)

    def _append_jsonl(self, file_path, record):
        with open(file_path, 'a', encoding='utf-8') as f:
            f.write(json.dumps(record) + "\n")

    def _guarded(self, description, func, *args):
        try:
            os.makedirs(self.log_dir, exist_ok=True)
            func(*args)
        except OSError as e:
            self.degraded = True
            logger.warning("DEGRADED: audit record '%s' not written: %s", description, e)
            return False
        self.degraded = False
        return True

    def record_bid(self, item, entry):
        ts = entry["ts"]
        item_fields = {"player_id": item["id"], "player_name": item["name"], "player_team": item.get("team") or ""}

        def write():
            self._append_csv_row(
                self.item_csv_path(item), BID_CSV_HEADER,
                [iso_from_ms(ts), ts, item["id"], item["name"], item.get("team") or "",
                 entry["bidder"], entry["bidder_name"], entry["amount"]],
            )
            self._append_jsonl(self.item_jsonl_path(item), {
                "event": "bid", "ts": ts, "ts_iso": iso_from_ms(ts), **item_fields,
                "bidder_ip": entry["bidder"], "bidder_name": entry["bidder_name"],
                "amount": entry["amount"], "current_bid": item["current_bid"],
            })
        return self._guarded(f"bid {item['id']}", write)

    def record_close(self, item, winner_key, winner_name, ts):
        record = {
            "event": "close", "ts": ts, "ts_iso": iso_from_ms(ts),
            "player_id": item["id"], "player_name": item["name"], "player_team": item.get("team") or "",
            "winner_ip": winner_key, "winner_name": winner_name, "final_amount": item["current_bid"],
        }
        return self._guarded(f"close {item['id']}", self._append_jsonl, self.item_jsonl_path(item), record)

    def record_auction_event(self, event, ts, **fields):
        record = {"event": event, **fields, "ts": ts, "ts_iso": iso_from_ms(ts)}
        return self._guarded(event, self._append_jsonl, self.auction_log_filepath, record)
