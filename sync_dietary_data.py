#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
sync_dietary_data.py

Dietary restrictions sync: spreadsheet -> roster JSON.

Input (one of):
- Google Sheet CSV export (--spreadsheet-id / GOOGLE_SPREADSHEET_ID, tab via --sheet)
- Local .xlsx / .xlsm / .csv file (--source-file)

Sheet layout:
- Row 0: column 0 is ignored, columns 1..N are member names
- Rows 1..: column 0 is the restriction label, member cells hold the answer

Cell rules:
- empty or "no" (any case) -> no restriction
- contains "airborne"      -> airborne, notes = first (...) text
- contains "small amount"  -> small_amounts, notes = raw value
- anything else            -> yes, notes = raw value

Output:
- data/dietary-restrictions.json (utf-8): {"members": [...], "restrictionsList": [...]}

Logs:
- Console + logs/dietary_sync.log

Dependencies:
- pandas
- openpyxl
- httpx
- python-dotenv
"""

from __future__ import annotations

import argparse
import csv
import io
import json
import logging
import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx
import pandas as pd
from dotenv import load_dotenv
from pandas.api.types import is_scalar


# -------------
# Configuration
# -------------

DEFAULT_OUTPUT_FILE = Path("data") / "dietary-restrictions.json"
DEFAULT_SHEET_NAME = "Sheet1"
DEFAULT_FETCH_TIMEOUT = 30.0

SHEET_CSV_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/gviz/tq"

# Number of members / restrictions echoed in --test mode
TEST_SAMPLE_MEMBERS = 3
TEST_SAMPLE_RESTRICTIONS = 3

SEVERITY_YES = "yes"
SEVERITY_SMALL_AMOUNTS = "small_amounts"
SEVERITY_AIRBORNE = "airborne"
SEVERITIES = (SEVERITY_YES, SEVERITY_SMALL_AMOUNTS, SEVERITY_AIRBORNE)

# Older roster files spell severities the way the sheet does
LEGACY_SEVERITY_ALIASES = {
    "small amounts": SEVERITY_SMALL_AMOUNTS,
    "small amount": SEVERITY_SMALL_AMOUNTS,
}

PAREN_NOTES_REGEX = re.compile(r"\((.*?)\)")

WORKBOOK_SUFFIXES = (".xlsx", ".xlsm")


# ------
# Errors
# ------

class ContentSyncError(Exception):
    """Base error for a sync run. `code` is what gets logged on failure."""

    code = "UNKNOWN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class InsufficientDataError(ContentSyncError):
    code = "INSUFFICIENT_DATA"


class NoDataError(ContentSyncError):
    code = "NO_DATA"


class SourceAccessError(ContentSyncError):
    code = "API_ERROR"


class ConfigError(ContentSyncError):
    code = "MISSING_CONFIG"


class SaveError(ContentSyncError):
    code = "SAVE_ERROR"


class RosterFormatError(ContentSyncError):
    code = "INVALID_ROSTER"


# -------------
# Data classes
# -------------

@dataclass
class Restriction:
    item: str
    severity: str
    notes: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {"item": self.item, "severity": self.severity, "notes": self.notes}


@dataclass
class Member:
    name: str
    restrictions: List[Restriction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "restrictions": [r.to_dict() for r in self.restrictions]}


@dataclass
class Roster:
    members: List[Member] = field(default_factory=list)
    restrictions_list: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "members": [m.to_dict() for m in self.members],
            "restrictionsList": list(self.restrictions_list),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Roster":
        if not isinstance(data, dict) or not isinstance(data.get("members"), list):
            raise RosterFormatError("Roster data must be an object with a 'members' list")

        members: List[Member] = []
        for raw_member in data["members"]:
            if not isinstance(raw_member, dict) or "name" not in raw_member:
                raise RosterFormatError(f"Invalid member entry: {raw_member!r}")
            restrictions = []
            for r in raw_member.get("restrictions") or []:
                if not isinstance(r, dict) or "item" not in r:
                    raise RosterFormatError(f"Invalid restriction for {raw_member['name']!r}: {r!r}")
                restrictions.append(
                    Restriction(
                        item=str(r["item"]),
                        severity=normalize_severity(r.get("severity")),
                        notes=str(r.get("notes") or ""),
                    )
                )
            members.append(Member(name=str(raw_member["name"]), restrictions=restrictions))

        restrictions_list = [str(x) for x in data.get("restrictionsList") or []]
        return cls(members=members, restrictions_list=restrictions_list)


def normalize_severity(value: Any) -> str:
    s = str(value or SEVERITY_YES).strip().lower()
    s = LEGACY_SEVERITY_ALIASES.get(s, s)
    if s not in SEVERITIES:
        raise RosterFormatError(f"Unknown severity: {value!r}")
    return s


# ----------
# Logging
# ----------

def setup_logging(debug: bool, name: str = "dietary_sync") -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    if logger.handlers:
        return logger

    os.makedirs("logs", exist_ok=True)
    log_path = Path("logs") / f"{name}.log"

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setLevel(logging.DEBUG if debug else logging.INFO)
    fh.setFormatter(fmt)

    sh = logging.StreamHandler(sys.stdout)
    sh.setLevel(logging.DEBUG if debug else logging.INFO)
    sh.setFormatter(fmt)

    logger.addHandler(fh)
    logger.addHandler(sh)
    return logger


# ----------------------
# Grid sources (pandas)
# ----------------------

def is_na_scalar(v: Any) -> bool:
    """
    Safe NA check that never returns an array/Series.
    """
    if v is None:
        return True
    if is_scalar(v):
        return bool(pd.isna(v))
    return False


def cell_to_str(v: Any) -> str:
    if is_na_scalar(v):
        return ""
    return str(v)


def frame_to_grid(raw: pd.DataFrame) -> List[List[str]]:
    """
    Headerless DataFrame -> list of rows of strings, trailing empty cells trimmed
    the way the Sheets API returns them.
    """
    grid: List[List[str]] = []
    for row in raw.itertuples(index=False, name=None):
        cells = [cell_to_str(v) for v in row]
        while cells and cells[-1] == "":
            cells.pop()
        grid.append(cells)

    while grid and not grid[-1]:
        grid.pop()
    return grid


def grid_from_csv_text(text: str) -> List[List[str]]:
    if not text.strip():
        return []
    # Data rows may run wider than the header row
    width = max(len(row) for row in csv.reader(io.StringIO(text)))
    raw = pd.read_csv(
        io.StringIO(text),
        header=None,
        names=range(width),
        dtype=str,
        keep_default_na=False,
    )
    return frame_to_grid(raw)


def read_grid_from_file(file_path: Path, sheet_name: Optional[str], logger: logging.Logger) -> List[List[str]]:
    """
    Read a local workbook (.xlsx/.xlsm via openpyxl) or .csv file into a grid.
    `sheet_name=None` reads the first sheet of a workbook.
    """
    suffix = file_path.suffix.lower()
    if suffix not in WORKBOOK_SUFFIXES and suffix != ".csv":
        raise SourceAccessError(f"Unsupported source file extension: {suffix}")
    if not file_path.exists():
        raise SourceAccessError(f"Source file not found: {file_path}")

    try:
        if suffix == ".csv":
            grid = grid_from_csv_text(file_path.read_text(encoding="utf-8-sig"))
        else:
            raw = pd.read_excel(
                file_path,
                sheet_name=sheet_name if sheet_name else 0,
                header=None,
                dtype=str,
                engine="openpyxl",
            )
            grid = frame_to_grid(raw)
    except Exception as e:
        logger.exception(f"{file_path.name}: failed to read grid")
        raise SourceAccessError(f"Failed to read {file_path.name}: {e}") from e

    logger.debug(f"{file_path.name}: read {len(grid)} row(s) from sheet {sheet_name or '#0'}")
    return grid


def fetch_sheet_grid(
    spreadsheet_id: str,
    sheet_name: str,
    logger: logging.Logger,
    timeout: float = DEFAULT_FETCH_TIMEOUT,
    client: Optional[httpx.Client] = None,
) -> List[List[str]]:
    """
    Fetch one tab of a Google Sheet through its CSV export (link-shared sheets
    only). Formatted values are returned, so formula results come through as text.
    """
    url = SHEET_CSV_EXPORT_URL.format(spreadsheet_id=spreadsheet_id)
    params = {"tqx": "out:csv", "sheet": sheet_name, "headers": "0"}

    own_client = client is None
    if own_client:
        client = httpx.Client(timeout=timeout, follow_redirects=True)

    try:
        resp = client.get(url, params=params)
    except httpx.HTTPError as e:
        raise SourceAccessError(f"Failed to fetch sheet data: {e}") from e
    finally:
        if own_client:
            client.close()

    logger.debug(f"GET {url} sheet={sheet_name!r} -> {resp.status_code}")

    if resp.status_code == 429:
        raise SourceAccessError("API rate limit exceeded", code="RATE_LIMIT")
    if resp.status_code in (401, 403):
        raise SourceAccessError(
            f"Access denied to spreadsheet (HTTP {resp.status_code}); is it shared by link?",
            code="ACCESS_DENIED",
        )
    if resp.status_code >= 400:
        raise SourceAccessError(f"Failed to fetch sheet data: HTTP {resp.status_code}")

    # Private sheets answer 200 with a sign-in page
    if "text/html" in resp.headers.get("content-type", "").lower():
        raise SourceAccessError("Spreadsheet is not publicly readable (got a sign-in page)", code="ACCESS_DENIED")

    try:
        grid = grid_from_csv_text(resp.text)
    except ValueError as e:
        raise SourceAccessError(f"Sheet export is not valid CSV: {e}") from e
    if not grid:
        raise NoDataError("No data found in spreadsheet")
    return grid


# -------------
# Sheet parsing
# -------------

def classify_cell(item: str, cell_value: str) -> Restriction:
    lower_value = cell_value.lower()

    if "airborne" in lower_value:
        m = PAREN_NOTES_REGEX.search(cell_value)
        return Restriction(item=item, severity=SEVERITY_AIRBORNE, notes=m.group(1) if m else "")

    if "small amount" in lower_value:
        return Restriction(item=item, severity=SEVERITY_SMALL_AMOUNTS, notes=cell_value)

    return Restriction(item=item, severity=SEVERITY_YES, notes=cell_value)


def is_absent(cell_value: str) -> bool:
    return cell_value == "" or cell_value.lower() == "no"


def parse_sheet_data(rows: Sequence[Sequence[Any]], logger: Optional[logging.Logger] = None) -> Roster:
    """
    Grid -> Roster. Member columns come from the header row; every later row
    with a label in column 0 is one restriction item.
    """
    if len(rows) < 2:
        raise InsufficientDataError("Insufficient data in spreadsheet")

    headers = [cell_to_str(h).strip() for h in list(rows[0])[1:]]
    members = [Member(name=name) for name in headers]
    restrictions_list: List[str] = []

    if logger:
        logger.info(f"Found member columns: {headers}")

    for row in rows[1:]:
        row = list(row)
        item = cell_to_str(row[0]).strip() if row else ""
        if not item:
            continue

        if item not in restrictions_list:
            restrictions_list.append(item)

        # Data beyond the last named member is ignored
        last_col = min(len(row) - 1, len(headers))
        for j in range(1, last_col + 1):
            cell_value = cell_to_str(row[j]).strip()
            if is_absent(cell_value):
                continue
            members[j - 1].restrictions.append(classify_cell(item, cell_value))

    if logger:
        logger.info(f"Processed {len(members)} members with {len(restrictions_list)} total restrictions")

    return Roster(members=members, restrictions_list=restrictions_list)


# ------------
# Roster store
# ------------

def save_roster(roster: Roster, out_path: Path, logger: logging.Logger) -> None:
    try:
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(
            json.dumps(roster.to_dict(), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
    except OSError as e:
        raise SaveError(f"Failed to save dietary data: {e}") from e
    logger.info(f"Saved dietary restrictions data to {out_path.resolve()}")


def load_roster(path: Path) -> Roster:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise RosterFormatError(f"Roster file not found: {path}") from e
    except json.JSONDecodeError as e:
        raise RosterFormatError(f"Roster file is not valid JSON: {e}") from e
    return Roster.from_dict(data)


# -----
# Main
# -----

def describe_sample(roster: Roster, logger: logging.Logger) -> None:
    logger.info("Sample parsed members:")
    for idx, member in enumerate(roster.members[:TEST_SAMPLE_MEMBERS], start=1):
        logger.info(f"--- Member {idx} ---")
        logger.info(f"Name: {member.name}")
        logger.info(f"Restrictions: {len(member.restrictions)}")
        for r in member.restrictions[:TEST_SAMPLE_RESTRICTIONS]:
            notes = f" - {r.notes}" if r.notes else ""
            logger.info(f"  * {r.item} ({r.severity}){notes}")


def run_sync(args: argparse.Namespace, logger: logging.Logger) -> Optional[Roster]:
    if args.source_file:
        source = Path(args.source_file)
        logger.info(f"Reading grid from {source.resolve()}")
        rows = read_grid_from_file(source, args.sheet, logger)
        if not rows:
            raise NoDataError(f"No data found in {source.name}")
    else:
        if not args.spreadsheet_id:
            raise ConfigError("GOOGLE_SPREADSHEET_ID (or --spreadsheet-id / --source-file) is required")
        logger.info(f"Fetching sheet {args.sheet or DEFAULT_SHEET_NAME!r} of spreadsheet {args.spreadsheet_id}")
        rows = fetch_sheet_grid(args.spreadsheet_id, args.sheet or DEFAULT_SHEET_NAME, logger, timeout=args.timeout)

    logger.info(f"Fetched {len(rows)} rows from spreadsheet")

    roster = parse_sheet_data(rows, logger)

    if args.test:
        describe_sample(roster, logger)
        logger.info("Test run complete; roster file not written.")
        return roster

    save_roster(roster, Path(args.out), logger)
    return roster


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync member dietary restrictions from a spreadsheet into a roster JSON file.")
    parser.add_argument("--spreadsheet-id", default=os.environ.get("GOOGLE_SPREADSHEET_ID"), help="Google Sheet id (default: $GOOGLE_SPREADSHEET_ID)")
    parser.add_argument("--sheet", default=os.environ.get("DIETARY_SHEET_NAME"), help=f"Sheet/tab name (default: $DIETARY_SHEET_NAME or {DEFAULT_SHEET_NAME}; first sheet for local workbooks)")
    parser.add_argument("--source-file", default=None, help="Read a local .xlsx/.xlsm/.csv file instead of fetching")
    parser.add_argument("--out", default=os.environ.get("DIETARY_OUTPUT_FILE", str(DEFAULT_OUTPUT_FILE)), help=f"Output roster JSON (default: {DEFAULT_OUTPUT_FILE})")
    parser.add_argument("--timeout", type=float, default=float(os.environ.get("DIETARY_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT)), help="HTTP timeout in seconds")
    parser.add_argument("--test", action="store_true", help="Fetch and parse only; print sample members without writing")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    logger = setup_logging(args.debug)

    logger.info("Testing dietary data sync..." if args.test else "Starting dietary data sync...")

    try:
        run_sync(args, logger)
    except ConfigError as e:
        logger.error(f"{e} (code={e.code})")
        return 2
    except ContentSyncError as e:
        logger.error(f"{'Test' if args.test else 'Dietary data sync'} failed: {e} (code={e.code})")
        return 1

    logger.info("Dietary data sync completed successfully.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
