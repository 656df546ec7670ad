# --- bidroom_results.py ---
import io
from datetime import datetime

from openpyxl import Workbook
from openpyxl.utils import get_column_letter

from bidroom_ledger import committed_credits, won_credits

RESULTS_SHEET = "Results"
BUDGETS_SHEET = "Budgets"


def _autosize(ws):
    for idx, column in enumerate(ws.columns, 1):
        width = max(len(str(cell.value)) if cell.value is not None else 0 for cell in column)
        ws.column_dimensions[get_column_letter(idx)].width = min(max(width + 2, 10), 50)


def build_results_workbook(engine):
    """Workbook with one row per player and one row per bidder budget."""
    snapshot = engine.to_snapshot()
    items = snapshot["players"]
    users = snapshot["users"]

    wb = Workbook()
    ws = wb.active
    ws.title = RESULTS_SHEET
    ws["A1"] = "Auction Name"
    ws["B1"] = snapshot["auction_name"]
    ws["A2"] = "Exported"
    ws["B2"] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    ws.append([])
    ws.append(["PlayerID", "Player Name", "Team", "Base Price", "Current/Final Bid", "Bidder IP", "Bidder Name", "Status", "Bids"])
    for item in items.values():
        bidder = item["current_bidder"]
        bidder_name = users.get(bidder, {}).get("name") if bidder else None
        if item["closed"]:
            status = "SOLD" if bidder else "UNSOLD"
        else:
            status = "OPEN"
        ws.append([
            item["id"], item["name"], item["team"], item["base_price"], item["current_bid"],
            bidder, bidder_name, status, len(item["history"]),
        ])
    _autosize(ws)

    ws = wb.create_sheet(BUDGETS_SHEET)
    ws.append(["Bidder IP", "Name", "Role", "Credits", "Won", "Committed", "Remaining"])
    for key, identity in users.items():
        committed = committed_credits(items, key)
        ws.append([
            key, identity["name"], identity["role"], identity["credits"],
            won_credits(items, key), committed, identity["credits"] - committed,
        ])
    _autosize(ws)
    return wb


def results_as_bytes(engine):
    buffer = io.BytesIO()
    build_results_workbook(engine).save(buffer)
    buffer.seek(0)
    return buffer


def save_results(engine, file_path):
    build_results_workbook(engine).save(file_path)
    return file_path
