"""Operational commands for the hexagon store.

Run with ``getout-maintenance <command>`` (or ``python -m getout.maintenance``).
"""

from __future__ import annotations

import argparse
import asyncio
from collections import Counter
from typing import Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, func, select

from . import models  # noqa: F401 - ensure models are registered with SQLModel
from .core import engine as default_engine
from .models import Activity, CaptureHistoryEntry, Hexagon, User
from .services import hexindex, leaderboard

_BATCH = 1000


def backfill_parents(session: Session, *, dry_run: bool = False) -> int:
    """Fill in or correct ``parent_hexagon_id``; returns the number of rows changed."""

    fixed = 0
    last_id = 0
    while True:
        batch = session.exec(
            select(Hexagon).where(Hexagon.id > last_id).order_by(Hexagon.id).limit(_BATCH)
        ).all()
        if not batch:
            break
        for hexagon in batch:
            last_id = hexagon.id
            expected = hexindex.parent_of(hexagon.hexagon_id)
            if hexagon.parent_hexagon_id != expected:
                fixed += 1
                if not dry_run:
                    hexagon.parent_hexagon_id = expected
                    hexagon.version += 1
                    session.add(hexagon)
        if not dry_run:
            session.commit()
    return fixed


def populate_previous_owner(session: Session, *, dry_run: bool = False) -> int:
    """Derive ``last_previous_owner_id`` from the newest history entry of each hexagon."""

    newest = (
        select(CaptureHistoryEntry.hexagon_pk, func.max(CaptureHistoryEntry.id).label("entry_id"))
        .group_by(CaptureHistoryEntry.hexagon_pk)
        .subquery()
    )
    rows = session.exec(
        select(Hexagon, CaptureHistoryEntry.user_id)
        .join(newest, newest.c.hexagon_pk == Hexagon.id)
        .join(CaptureHistoryEntry, CaptureHistoryEntry.id == newest.c.entry_id)
    ).all()

    updated = 0
    for hexagon, previous_owner in rows:
        if hexagon.last_previous_owner_id == previous_owner:
            continue
        updated += 1
        if not dry_run:
            hexagon.last_previous_owner_id = previous_owner
            hexagon.version += 1
            session.add(hexagon)
    if not dry_run:
        session.commit()
    return updated


def parent_distribution(session: Session, top: int = 10) -> Dict[str, object]:
    counts = Counter(
        {
            parent: cells
            for parent, cells in session.exec(
                select(Hexagon.parent_hexagon_id, func.count(Hexagon.id)).group_by(
                    Hexagon.parent_hexagon_id
                )
            ).all()
        }
    )
    if not counts:
        return {"parents": 0, "cells": 0, "min": 0, "max": 0, "mean": 0.0, "top": []}
    values = list(counts.values())
    return {
        "parents": len(counts),
        "cells": sum(values),
        "min": min(values),
        "max": max(values),
        "mean": round(sum(values) / len(values), 1),
        "top": counts.most_common(top),
    }


def check(session: Session) -> List[str]:
    """Integrity problems found in the store; empty when everything is consistent."""

    problems: List[str] = []
    hexagons = session.exec(select(Hexagon)).all()
    user_ids = set(session.exec(select(User.id)).all())
    activity_ids = set(session.exec(select(Activity.id)).all())
    history_counts = Counter(
        {
            pk: n
            for pk, n in session.exec(
                select(CaptureHistoryEntry.hexagon_pk, func.count(CaptureHistoryEntry.id)).group_by(
                    CaptureHistoryEntry.hexagon_pk
                )
            ).all()
        }
    )

    for hexagon in hexagons:
        label = hexagon.hexagon_id
        if not hexindex.is_valid_cell(label):
            problems.append(f"{label}: invalid H3 cell id")
            continue
        if hexagon.parent_hexagon_id != hexindex.parent_of(label):
            problems.append(f"{label}: parent is {hexagon.parent_hexagon_id}, expected {hexindex.parent_of(label)}")
        if hexagon.current_owner_id not in user_ids:
            problems.append(f"{label}: owner {hexagon.current_owner_id} does not exist")
        if hexagon.current_activity_id not in activity_ids:
            problems.append(f"{label}: activity {hexagon.current_activity_id} does not exist")
        if hexagon.capture_count < 1:
            problems.append(f"{label}: capture_count {hexagon.capture_count} < 1")
        elif hexagon.capture_count != history_counts.get(hexagon.id, 0) + 1:
            problems.append(
                f"{label}: capture_count {hexagon.capture_count} but "
                f"{history_counts.get(hexagon.id, 0)} history entries"
            )
    return problems


def _cmd_backfill_parents(session: Session, args: argparse.Namespace) -> int:
    fixed = backfill_parents(session, dry_run=args.dry_run)
    verb = "Would fix" if args.dry_run else "Fixed"
    print(f"{verb} parent id on {fixed} hexagon(s).")
    return 0


def _cmd_populate_previous_owner(session: Session, args: argparse.Namespace) -> int:
    updated = populate_previous_owner(session, dry_run=args.dry_run)
    verb = "Would update" if args.dry_run else "Updated"
    print(f"{verb} last previous owner on {updated} hexagon(s).")
    return 0


def _cmd_parent_distribution(session: Session, args: argparse.Namespace) -> int:
    stats = parent_distribution(session, top=args.top)
    print("Parent hexagon distribution")
    print(f"- parents: {stats['parents']}")
    print(f"- cells: {stats['cells']}")
    print(f"- cells per parent: min={stats['min']} max={stats['max']} mean={stats['mean']}")
    for parent, cells in stats["top"]:
        print(f"  - {parent}: {cells}")
    return 0


def _cmd_check(session: Session, args: argparse.Namespace) -> int:
    print(f"Users: {session.exec(select(func.count(User.id))).one()}")
    print(f"Activities: {session.exec(select(func.count(Activity.id))).one()}")
    print(f"Hexagons: {session.exec(select(func.count(Hexagon.id))).one()}")
    problems = check(session)
    for problem in problems[: args.limit]:
        print(f"  ! {problem}")
    if problems:
        print(f"{len(problems)} problem(s) found.")
        return 1
    print("No problems found.")
    return 0


def _cmd_refresh_leaderboard(session: Session, args: argparse.Namespace) -> int:
    asyncio.run(leaderboard.refresh(session.get_bind()))
    entries = leaderboard.get_global_leaderboard(session)
    print(f"Leaderboard refreshed with {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="getout-maintenance", description="Hexagon store maintenance.")
    sub = parser.add_subparsers(dest="command", required=True)

    backfill = sub.add_parser("backfill-parents", help="Fill in or correct parent hexagon ids")
    backfill.add_argument("--dry-run", action="store_true", help="Report without writing")
    backfill.set_defaults(handler=_cmd_backfill_parents)

    previous = sub.add_parser(
        "populate-previous-owner", help="Derive last previous owner from capture history"
    )
    previous.add_argument("--dry-run", action="store_true", help="Report without writing")
    previous.set_defaults(handler=_cmd_populate_previous_owner)

    distribution = sub.add_parser("parent-distribution", help="Summarise cells per parent hexagon")
    distribution.add_argument("--top", type=int, default=10, help="Show the N busiest parents (default: 10)")
    distribution.set_defaults(handler=_cmd_parent_distribution)

    checker = sub.add_parser("check", help="Report counts and integrity problems")
    checker.add_argument("--limit", type=int, default=50, help="Print at most N problems (default: 50)")
    checker.set_defaults(handler=_cmd_check)

    refresh = sub.add_parser("refresh-leaderboard", help="Rebuild the global leaderboard cache")
    refresh.set_defaults(handler=_cmd_refresh_leaderboard)
    return parser


def main(argv: Optional[List[str]] = None, engine: Optional[Engine] = None) -> int:
    args = build_parser().parse_args(argv)
    bind = engine if engine is not None else default_engine
    SQLModel.metadata.create_all(bind)
    handler: Callable[[Session, argparse.Namespace], int] = args.handler
    with Session(bind) as session:
        return handler(session, args)


if __name__ == "__main__":
    raise SystemExit(main())
