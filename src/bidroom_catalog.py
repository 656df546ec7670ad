# --- bidroom_catalog.py ---
import os
import csv
import json
import argparse

import pandas as pd

# --- Setup file sections ---
SETUP_SECTION_CONFIG = "[CONFIG]"
SETUP_SECTION_USERS = "[USERS]"
SETUP_SECTION_PLAYERS = "[PLAYERS]"
SETUP_KEY_AUCTION_NAME = "AuctionName"
CSV_DELIMITER = ','

USERS_FILE_NAME = "users.json"
PLAYERS_FILE_NAME = "players.json"
USERS_SHEET_NAME = "Users"
PLAYERS_SHEET_NAME = "Players"

USER_HEADER = ["ip", "name", "credits", "role"]
PLAYER_HEADER = ["id", "name", "team", "base"]

ROLE_ADMIN = "admin"
ROLE_USER = "user"
DEFAULT_AUCTION_NAME = "Untitled Auction"


class CatalogError(Exception):
    """Raised when the setup catalogs cannot be turned into a valid auction."""
    pass


def _whole_number(value):
    # Spreadsheets hand back "500.0" for integer cells
    number = float(value)
    if not number.is_integer():
        raise ValueError(f"not a whole number: {value!r}")
    return int(number)


class IdentityRegistry:
    """Static map of network key -> {name, credits, role}."""

    def __init__(self, entries=None):
        self._identities = {}
        for i, entry in enumerate(entries or []):
            self.add(entry, position=i + 1)

    def add(self, entry, position=None):
        where = f" (entry {position})" if position else ""
        key = str(entry.get("ip") or "").strip()
        if not key:
            raise CatalogError(f"User without network key{where}: {entry}")
        if key in self._identities:
            raise CatalogError(f"Duplicate user key '{key}'{where}.")
        try:
            credits = _whole_number(entry.get("credits") or 0)
        except (TypeError, ValueError):
            raise CatalogError(f"Invalid credits for '{key}'{where}: {entry.get('credits')!r}")
        if credits < 0:
            raise CatalogError(f"Credits cannot be negative for '{key}'{where}.")
        # Anything that is not literally "admin" is a plain bidder
        role = ROLE_ADMIN if str(entry.get("role") or "").strip().lower() == ROLE_ADMIN else ROLE_USER
        self._identities[key] = {"name": str(entry.get("name") or key), "credits": credits, "role": role}

    def lookup(self, key):
        return self._identities.get(key)

    def is_admin(self, key):
        identity = self._identities.get(key)
        return bool(identity and identity["role"] == ROLE_ADMIN)

    def keys(self):
        return list(self._identities.keys())

    def items(self):
        return self._identities.items()

    def __contains__(self, key):
        return key in self._identities

    def __len__(self):
        return len(self._identities)

    def to_dict(self):
        return {key: dict(identity) for key, identity in self._identities.items()}


def build_catalog(players_list_dicts):
    """Normalise raw player rows into catalog entries keyed by item id."""
    catalog = {}
    for i, player in enumerate(players_list_dicts):
        item_id = str(player.get("id") if player.get("id") is not None else "").strip()
        name = str(player.get("name") or "").strip()
        if not item_id:
            raise CatalogError(f"Player without id (entry {i+1}): {player}")
        if not name:
            raise CatalogError(f"Player name cannot be empty (id '{item_id}').")
        if item_id in catalog:
            raise CatalogError(f"Duplicate player id '{item_id}'.")
        base = player.get("base")
        try:
            base = _whole_number(base) if base not in (None, "") else 1
        except (TypeError, ValueError):
            raise CatalogError(f"Invalid base price for '{name}': {player.get('base')!r}")
        if base < 1:
            raise CatalogError(f"Base price must be at least 1 for '{name}'.")
        catalog[item_id] = {"id": item_id, "name": name, "team": str(player.get("team") or ""), "base": base}
    return catalog


class AuctionSetup:
    def __init__(self, auction_name, registry, catalog):
        self.auction_name = auction_name
        self.registry = registry
        self.catalog = catalog


def _read_json_list(file_path):
    if not os.path.exists(file_path):
        return []
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (IOError, json.JSONDecodeError) as e:
        raise CatalogError(f"Cannot read {file_path}: {e}")
    if not isinstance(data, list):
        raise CatalogError(f"{file_path} must contain a JSON list.")
    return data


def load_setup_from_directory(dir_path):
    users = _read_json_list(os.path.join(dir_path, USERS_FILE_NAME))
    players = _read_json_list(os.path.join(dir_path, PLAYERS_FILE_NAME))
    return AuctionSetup(DEFAULT_AUCTION_NAME, IdentityRegistry(users), build_catalog(players))


def load_setup_from_csv(file_path):
    """Parses a sectioned setup CSV ([CONFIG], [USERS], [PLAYERS])."""
    auction_name = DEFAULT_AUCTION_NAME
    users, players = [], []
    section, header_seen = None, False
    expected_headers = {SETUP_SECTION_USERS: USER_HEADER, SETUP_SECTION_PLAYERS: PLAYER_HEADER}
    try:
        with open(file_path, 'r', newline='', encoding='utf-8-sig') as f:
            reader = csv.reader(f)
            for line_num, row in enumerate(reader, 1):
                if not any(field.strip() for field in row): continue
                first_cell = row[0].strip()
                if first_cell.startswith('['):
                    section, header_seen = first_cell.upper(), False
                    continue
                if first_cell.startswith('#'): continue

                if section == SETUP_SECTION_CONFIG:
                    if len(row) >= 2 and first_cell == SETUP_KEY_AUCTION_NAME:
                        auction_name = row[1].strip() or auction_name
                elif section in expected_headers:
                    columns = expected_headers[section]
                    if not header_seen:
                        got = [h.strip().lower() for h in row]
                        if got[:len(columns)] != columns:
                            raise CatalogError(f"Invalid header for {section} (L{line_num}). Expected '{','.join(columns)}', got '{','.join(row)}'.")
                        header_seen = True
                        continue
                    values = [cell.strip() for cell in row] + [""] * len(columns)
                    record = dict(zip(columns, values))
                    (users if section == SETUP_SECTION_USERS else players).append(record)
                else:
                    raise CatalogError(f"Data outside of a known section (L{line_num}): {row}")
    except FileNotFoundError:
        raise CatalogError(f"Setup file not found: {file_path}")
    except IOError as e:
        raise CatalogError(f"Error reading setup file {file_path}: {e}")
    return AuctionSetup(auction_name, IdentityRegistry(users), build_catalog(players))


def load_setup_from_excel(file_path):
    try:
        sheets = pd.read_excel(file_path, sheet_name=None, dtype=str)
    except (IOError, ValueError) as e:
        raise CatalogError(f"Failed to load workbook {file_path}: {e}")
    missing = [name for name in (USERS_SHEET_NAME, PLAYERS_SHEET_NAME) if name not in sheets]
    if missing:
        raise CatalogError(f"Workbook {file_path} is missing sheet(s): {', '.join(missing)}")

    def records(sheet):
        sheet = sheet.dropna(how="all").fillna("")
        sheet.columns = [str(c).strip().lower() for c in sheet.columns]
        return sheet.to_dict("records")

    users = records(sheets[USERS_SHEET_NAME])
    players = records(sheets[PLAYERS_SHEET_NAME])
    return AuctionSetup(DEFAULT_AUCTION_NAME, IdentityRegistry(users), build_catalog(players))


def load_setup(path):
    """Loads users and players from a data directory, a setup CSV or an Excel workbook."""
    if os.path.isdir(path):
        return load_setup_from_directory(path)
    extension = os.path.splitext(path)[1].lower()
    if extension == ".csv":
        return load_setup_from_csv(path)
    if extension in (".xlsx", ".xls"):
        return load_setup_from_excel(path)
    raise CatalogError(f"Unsupported setup source: {path}")


def generate_template_csv_content():
    """Generates the content for a template setup CSV that load_setup_from_csv accepts."""
    template_str = f"""{SETUP_SECTION_CONFIG}
{SETUP_KEY_AUCTION_NAME},My Live Auction

{SETUP_SECTION_USERS}
{CSV_DELIMITER.join(USER_HEADER)}
# ^ Required header. One bidder per line, keyed by the address they connect from.
# Any role other than "admin" is a plain bidder.
127.0.0.1,Admin,0,admin
192.168.1.10,Alice,500,user
192.168.1.11,Bob,500,user

{SETUP_SECTION_PLAYERS}
{CSV_DELIMITER.join(PLAYER_HEADER)}
# ^ Required header. Base price defaults to 1 when left empty.
1,Player One,Team Alpha,1
2,Player Two,Team Bravo,5
3,Player Three,Team Alpha,
"""
    return template_str


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Bidroom setup utility. Can generate a template setup CSV."
    )
    parser.add_argument(
        "-t", "--template",
        action="store_true",
        help="Generate a template setup CSV file."
    )
    parser.add_argument(
        "-o", "--output",
        type=str,
        default="bidroom_setup_template.csv",
        help="Output filename for the template CSV (default: bidroom_setup_template.csv)."
    )

    args = parser.parse_args()

    if args.template:
        output_filename = args.output
        try:
            with open(output_filename, "w", newline='', encoding='utf-8') as f:
                f.write(generate_template_csv_content())
            print(f"Template CSV file '{output_filename}' generated successfully.")
        except IOError as e:
            print(f"Error writing template file '{output_filename}': {e}")
    else:
        print("Bidroom setup module. Use -t or --template to generate a setup CSV template.")
