# scripts/session_sweeper.py
"""
Pending-session sweeper "tick".

Meant to be run from cron (or a Kubernetes CronJob) every minute or so:

    python -m scripts.session_sweeper --ttl-seconds 120

Internal calls still ringing after the TTL are expired and their users'
presence is handed back.
"""

from __future__ import annotations

import argparse
import logging

from app.config import get_settings
from app.db.session import session_scope
from app.services.session_sweeper import expire_stale_sessions


def run_once(ttl_seconds: int | None = None) -> int:
    with session_scope() as db:
        expired = expire_stale_sessions(db, ttl_seconds=ttl_seconds)
    print(f"[session_sweeper] Expired {expired} pending internal calls")
    return expired


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--ttl-seconds",
        type=int,
        default=None,
        help="Override PENDING_SESSION_TTL_SECONDS for this tick",
    )
    args = parser.parse_args()
    logging.basicConfig(level=get_settings().LOG_LEVEL)
    run_once(ttl_seconds=args.ttl_seconds)


if __name__ == "__main__":
    main()
