"""
Remote category mirror.

Fetches a principal's category groups and categories from the budgeting
service and upserts them into mirror_groups / mirror_categories keyed by
(external_id, owner). The mirror is additive: anything missing upstream stays.
Mirrored category names are also made available as local categories.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from household import categories, db
from household.errors import UpstreamError
from household.principals import AuthContext
from household.remote.client import BudgetServiceClient
from household.remote.credentials import CredentialStore
from household.timeutil import to_iso, utcnow

logger = logging.getLogger(__name__)

INTERNAL_GROUP_PREFIX = "internal:"
MIRROR_DESCRIPTION = "Synced from YNAB"


@dataclass
class MirroredCategory:
    id: str
    name: str


@dataclass
class MirroredGroup:
    id: str
    name: str
    categories: list[MirroredCategory] = field(default_factory=list)


@dataclass
class MirrorResult:
    owner_id: str
    groups: int
    categories: int
    skipped: int
    synced_at: str

    def to_dict(self) -> dict:
        return {
            "owner_id": self.owner_id,
            "groups": self.groups,
            "categories": self.categories,
            "skipped": self.skipped,
            "synced_at": self.synced_at,
        }


def _skip(item: dict) -> bool:
    return bool(item.get("hidden")) or bool(item.get("deleted"))


def parse_category_groups(payload: dict) -> tuple[list[MirroredGroup], int]:
    """
    Parse ``{"data": {"category_groups": [...]}}`` into groups.

    Hidden or deleted groups and categories are skipped, as are the service's
    internal groups. Returns the groups and the number of skipped items.
    """
    data = payload.get("data")
    raw_groups = data.get("category_groups") if isinstance(data, dict) else None
    if not isinstance(raw_groups, list):
        raise UpstreamError(200, "Category response is missing data.category_groups")

    groups: list[MirroredGroup] = []
    skipped = 0
    for raw in raw_groups:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        group_id = str(raw.get("id") or "")
        if not group_id or _skip(raw) or group_id.startswith(INTERNAL_GROUP_PREFIX):
            skipped += 1
            continue
        group = MirroredGroup(id=group_id, name=raw.get("name") or "")
        raw_categories = raw.get("categories")
        if raw_categories is None:
            raw_categories = []
        if not isinstance(raw_categories, list):
            raise UpstreamError(200, f"Category group {group_id} has a malformed categories field")
        for cat in raw_categories:
            if not isinstance(cat, dict) or not cat.get("id") or _skip(cat):
                skipped += 1
                continue
            group.categories.append(MirroredCategory(id=str(cat["id"]), name=cat.get("name") or ""))
        groups.append(group)
    return groups, skipped


class RemoteMirror:
    def __init__(
        self,
        credentials: CredentialStore,
        client: BudgetServiceClient,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.credentials = credentials
        self.client = client
        self.clock = clock

    async def sync_categories(self, owner_id: str, mark_synced: bool = True) -> MirrorResult:
        """
        Mirror *owner_id*'s remote categories.

        Raises NotConfigured without complete credentials and UpstreamError on
        a non-2xx response; in both cases nothing local is touched. Database
        work runs in a worker thread.
        """
        creds = await asyncio.to_thread(self.credentials.load_credentials, owner_id)
        payload = await self.client.get_categories(creds.token, creds.budget_id)
        groups, skipped = parse_category_groups(payload)

        now = self.clock()
        stamp = to_iso(now)
        category_count = await asyncio.to_thread(self._store, owner_id, groups, stamp)
        if mark_synced:
            await asyncio.to_thread(self.credentials.mark_synced, owner_id, now)

        logger.info(
            f"Mirrored {len(groups)} groups / {category_count} categories for {owner_id} ({skipped} skipped)"
        )
        return MirrorResult(owner_id, len(groups), category_count, skipped, stamp)

    def _store(self, owner_id: str, groups: list[MirroredGroup], stamp: str) -> int:
        category_count = 0
        with db.get_connection() as conn:
            for group in groups:
                conn.execute(
                    """
                    INSERT INTO mirror_groups (external_id, owner_id, name, last_updated)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (external_id, owner_id)
                    DO UPDATE SET name = excluded.name, last_updated = excluded.last_updated
                    """,
                    (group.id, owner_id, group.name, stamp),
                )
                for category in group.categories:
                    conn.execute(
                        """
                        INSERT INTO mirror_categories (external_id, owner_id, group_id, name, last_updated)
                        VALUES (?, ?, ?, ?, ?)
                        ON CONFLICT (external_id, owner_id)
                        DO UPDATE SET group_id = excluded.group_id, name = excluded.name,
                                      last_updated = excluded.last_updated
                        """,
                        (category.id, owner_id, group.id, category.name, stamp),
                    )
                    if category.name.strip():
                        categories.find_or_create(conn, owner_id, category.name, MIRROR_DESCRIPTION)
                    category_count += 1
        return category_count

    def list_mirror(self, ctx: AuthContext) -> list[dict]:
        """The caller's mirrored groups with their categories."""
        with db.get_connection() as conn:
            groups = conn.fetchall(
                "SELECT * FROM mirror_groups WHERE owner_id = ? ORDER BY name, external_id", (ctx.principal_id,)
            )
            cats = conn.fetchall(
                "SELECT * FROM mirror_categories WHERE owner_id = ? ORDER BY name, external_id",
                (ctx.principal_id,),
            )
        by_group: dict[str, list[dict]] = {}
        for cat in cats:
            by_group.setdefault(cat["group_id"], []).append(
                {"id": cat["external_id"], "name": cat["name"], "last_updated": cat["last_updated"]}
            )
        return [
            {
                "id": g["external_id"],
                "name": g["name"],
                "last_updated": g["last_updated"],
                "categories": by_group.get(g["external_id"], []),
            }
            for g in groups
        ]
