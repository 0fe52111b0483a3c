"""
mealdrop.constants — Shared Constants & Helpers
================================================

Single source of truth for singleton ids, defaults and the idempotency key
format.  Import from here instead of duplicating in services and routes.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Global stats singleton
# ---------------------------------------------------------------------------
GLOBAL_STATS_ID = "global"
DEFAULT_GOAL_TARGET = 1_000_000

# ---------------------------------------------------------------------------
# Pagination / display
# ---------------------------------------------------------------------------
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
RECENT_DROPS_LIMIT = 20
TOP_CONTRIBUTORS_LIMIT = 10
TEAM_TOP_MEMBERS_LIMIT = 5

# Stand-in for "no user" in idempotency keys (community-level credits).
COMMUNITY_PLACEHOLDER = "*"


# ---------------------------------------------------------------------------
# Idempotency keys
# ---------------------------------------------------------------------------
def idempotency_key(source: str, reference_id: str, user_id: str | None) -> str:
    """Build the unique ``source:reference:user`` key for a ledger entry.

    A (source, reference, user) tuple may produce at most one row; the key is
    stored in a UNIQUE column so the database enforces it even across
    service instances.
    """
    return f"{source}:{reference_id}:{user_id or COMMUNITY_PLACEHOLDER}"
