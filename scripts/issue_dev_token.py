"""
Issue a developer token for an existing user.

The clear token is printed once; only its hash is stored.
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediapub.config import get_settings
from mediapub.credentials import DevTokenManager
from mediapub.dependencies import build_backends
from mediapub.errors import MediaPubError

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Issue a developer token")
    parser.add_argument("username", help="Owner of the new token")
    parser.add_argument("--name", required=True, help="Label for the token")
    parser.add_argument(
        "--scope",
        type=str,
        default="upload",
        help="Scope string stored with the token",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=365,
        help="Days until the token expires",
    )
    args = parser.parse_args()

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )
    if not settings.database_url or settings.use_in_memory_backends:
        logger.error("DATABASE_URL must point at a persistent database")
        return 2

    backends = build_backends(settings)
    try:
        user = backends.db.get_user_by_username(args.username)
        if user is None:
            logger.error("No such user: %s", args.username)
            return 1
        token, record = DevTokenManager(backends.db).issue(
            user.user_id, args.name, args.scope, ttl=timedelta(days=args.days)
        )
    except MediaPubError as exc:
        logger.error("Could not issue token: %s", exc.public_message)
        return 1
    finally:
        backends.close()

    print(f"token_id: {record.token_id}")
    print(f"expires_at: {record.expires_at.isoformat()}")
    print(f"token: {token}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
