#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from dotenv import load_dotenv
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from tool_lending.db.base import Base
from tool_lending.db.session import build_database_url, build_engine, build_session_factory
from tool_lending.models.lending_models import Tool
from tool_lending.services.tool_service import create_tool


SAMPLE_TOOLS = [
    ("Electric Drill", "Cordless 18V drill with battery and charger"),
    ("Circular Saw", "7-1/4 inch circular saw for wood cutting"),
    ("Socket Set", "Complete metric and imperial socket set"),
    ("Angle Grinder", "4-1/2 inch angle grinder with cutting and grinding discs"),
    ("Digital Multimeter", "Auto-ranging multimeter for electrical testing"),
]


def seed(session_factory: sessionmaker, force: bool = False) -> int:
    """Insert the sample tools. Returns how many were created."""
    with session_factory() as db:
        existing = db.execute(select(func.count(Tool.id))).scalar() or 0
        if existing and not force:
            print(f"Database already has {existing} tool(s). Use --force to add the samples anyway.")
            return 0

        created = 0
        for name, description in SAMPLE_TOOLS:
            tool = create_tool(db, name, description)
            print(f"  + {tool.name} code={tool.id}")
            created += 1
        return created


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Seed the tool lending database with sample tools.")
    parser.add_argument(
        "--db-url",
        default="",
        help="SQLAlchemy DB URL; defaults to DATABASE_URL / DB_* env vars.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Add the sample tools even when the tools table is not empty.",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")

    db_url = (args.db_url or "").strip() or build_database_url()
    try:
        engine = build_engine(db_url)
        Base.metadata.create_all(engine)
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    created = seed(build_session_factory(engine), force=args.force)
    print(f"Seeded {created} tool(s).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
