"""
Grant admin rights to a user by handle (or DID).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from collective.dependencies import get_db_client, get_profile_resolver

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Make a Collective user an admin")
    parser.add_argument("handle", help="Handle (alice.bsky.social) or DID of the user")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    handle = args.handle.lstrip("@").strip()
    if not handle:
        logger.error("A handle is required")
        return 1

    if handle.startswith("did:"):
        did = handle
        handle = None
    else:
        did = get_profile_resolver().resolve_handle(handle)
        if not did:
            logger.error("Could not resolve handle %s", handle)
            return 1
        logger.info("Resolved %s to %s", handle, did)

    try:
        outcome = get_db_client().set_admin(did, handle)
    except Exception:
        logger.exception("Failed to update admin flag for %s", did)
        return 1

    if outcome == "unchanged":
        logger.info("%s is already an admin", handle or did)
    elif outcome == "created":
        logger.info("Created user %s as admin", handle or did)
    else:
        logger.info("Granted admin to %s", handle or did)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
