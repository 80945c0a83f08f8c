import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional

from dietary_summary import (
    SUMMARY_EXCLUDED_WORDS,
    Summary,
    build_query_string,
    export_filename,
    format_summary_as_text,
    make_item_filter,
    summary_from_query,
)
from sync_dietary_data import DEFAULT_OUTPUT_FILE, ContentSyncError, load_roster, setup_logging


OUT_FOLDER = Path("exports")


def build_summary(roster_path: Path, query: str) -> Optional[Summary]:
    roster = load_roster(roster_path)
    return summary_from_query(roster, query, restriction_filter=make_item_filter(SUMMARY_EXCLUDED_WORDS))


def render_summary(summary: Summary, as_json: bool = False) -> str:
    if as_json:
        return json.dumps(summary.to_dict(), indent=2, ensure_ascii=False) + "\n"
    return format_summary_as_text(summary)


def write_summary(summary: Summary, out_folder: Path, as_json: bool = False) -> Path:
    out_folder.mkdir(parents=True, exist_ok=True)
    out_path = out_folder / export_filename(summary.meal_name)
    if as_json:
        out_path = out_path.with_suffix(".json")
    out_path.write_text(render_summary(summary, as_json), encoding="utf-8")
    return out_path


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Write the dietary summary for a meal to a text file.")
    parser.add_argument("--roster", default=str(DEFAULT_OUTPUT_FILE), help="Roster JSON written by sync_dietary_data.py")
    parser.add_argument("--attendees", default="", help="Comma-separated attendee names (case-insensitive)")
    parser.add_argument("--meal", default="", help="Meal name used in the title and file name")
    parser.add_argument("--query", default=None, help="Shared link or query string (?attendees=...&meal=...) instead of --attendees/--meal")
    parser.add_argument("--out-folder", default=str(OUT_FOLDER), help="Folder for the exported file")
    parser.add_argument("--stdout", action="store_true", help="Print the summary instead of writing a file")
    parser.add_argument("--json", action="store_true", help="Emit the summary as JSON ({mealName, attendees, airborne, other, byPerson}) instead of text")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging")
    args = parser.parse_args(argv)

    logger = setup_logging(args.debug, name="dietary_export")

    attendees = [a for a in args.attendees.split(",") if a.strip()]
    query = args.query or build_query_string(attendees, args.meal)
    if not args.query and not attendees:
        logger.error("Nothing to summarize: pass --attendees or --query")
        return 2

    try:
        summary = build_summary(Path(args.roster), query)
    except ContentSyncError as e:
        logger.error(f"{e} (code={e.code})")
        return 1

    if summary is None:
        logger.warning("No attendee matched the roster")
        return 1

    if args.stdout:
        sys.stdout.write(render_summary(summary, args.json))
        return 0

    out_path = write_summary(summary, Path(args.out_folder), args.json)
    logger.info(f"Summary written: {out_path.resolve()}")
    logger.info(f"Share link: ?{build_query_string(summary.attendees, summary.meal_name)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
