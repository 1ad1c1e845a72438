#!/usr/bin/env python3
"""
Note client walkthrough.

Signs in (or signs up) against the configured backend, creates a few
tagged notes, shows search / tag filtering and facets, then signs out.
Backend settings come from .env (see noteapp/config.py).

Usage:
    python scripts/demo.py --email me@example.com --password secret
    python scripts/demo.py --email me@example.com --password secret \
        --full-name "Ada Lovelace" --sign-up
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from noteapp.config import Settings
from noteapp.context import AppContext, build_context

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger("demo")

# ---------------------------------------------------------------------------
# ANSI colours
# ---------------------------------------------------------------------------
BOLD = "\033[1m"
DIM = "\033[2m"
RESET = "\033[0m"
CYAN = "\033[96m"
GREEN = "\033[92m"
YELLOW = "\033[93m"
RED = "\033[91m"

SAMPLE_NOTES: list[tuple[str, str, list[str]]] = [
    ("Shopping", "<p>Milk, eggs, coffee</p>", ["Home"]),
    ("Budget report", "<p>Q3 spending is <b>under</b> plan.</p>", ["work", " home "]),
    ("", "<p>Call the plumber about the kitchen sink</p>", ["home", "todo"]),
]


def step(number: int, title: str) -> None:
    """Print a step header."""
    print(f"\n{YELLOW}{BOLD}--- Step {number}: {title} ---{RESET}\n")


def flush(ctx: AppContext) -> None:
    """Print and clear pending notifications."""
    for n in ctx.notifier.drain():
        colour = RED if n.level == "error" else GREEN if n.level == "success" else DIM
        print(f"  {colour}[{n.level}] {n.message}{RESET}")


def show_notes(ctx: AppContext) -> None:
    if ctx.empty_message:
        print(f"  {DIM}{ctx.empty_message}{RESET}")
    for note in ctx.visible_notes:
        tags = ", ".join(note.tags) or "-"
        print(f"  {CYAN}{note.title}{RESET}  [{tags}]  {DIM}{note.preview(60)}{RESET}")


async def run(args: argparse.Namespace) -> int:
    settings = Settings()
    ctx = await build_context(settings)
    async with ctx:
        step(1, "Session")
        if ctx.identity is None:
            if args.sign_up:
                await ctx.sign_up(args.email, args.password, args.full_name)
            else:
                await ctx.sign_in(args.email, args.password)
        flush(ctx)
        if ctx.identity is None:
            print(f"  {RED}Not signed in, stopping.{RESET}")
            return 1
        print(f"  Signed in as {ctx.identity.email}; notes used: {ctx.quota_label}")

        step(2, "Create notes")
        for title, content, tags in SAMPLE_NOTES:
            await ctx.save_note(None, title, content, tags)
            flush(ctx)
        show_notes(ctx)

        step(3, "Filter")
        ctx.filters.search = "report"
        print(f"  search={ctx.filters.search!r}")
        show_notes(ctx)
        ctx.filters.clear()
        ctx.filters.tag = "home"
        print(f"  tag={ctx.filters.tag!r}")
        show_notes(ctx)
        ctx.filters.clear()

        step(4, "Tag facets")
        for facet in ctx.facets:
            print(f"  #{facet.tag}: {facet.count}")

        if not args.keep_session:
            step(5, "Sign out")
            await ctx.sign_out()
            flush(ctx)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[1])
    parser.add_argument("--email", required=True)
    parser.add_argument("--password", required=True)
    parser.add_argument("--full-name", default="Demo User")
    parser.add_argument("--sign-up", action="store_true", help="Create the account first")
    parser.add_argument(
        "--keep-session", action="store_true", help="Stay signed in afterwards"
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
