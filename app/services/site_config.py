"""
Site Config Service - Versioned marketing content document.

The document is replaced whole on every admin save. Writes use optimistic
concurrency on `revision`; older schema versions are upgraded on read.
"""

import copy
import json
from datetime import UTC, datetime
from functools import lru_cache
from pathlib import Path
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from app.db.models import SiteDocumentRow
from app.exceptions import ConcurrencyError
from app.models.domain import SiteDocument

logger = get_logger(__name__)

SITE_CONFIG_KEY = "site-config-v2"
CURRENT_SCHEMA_VERSION = 2

# Sections that moved to catalog tables in schema v2
LEGACY_SECTIONS = ("projectTemplates", "partners", "commissionLogs", "razorpay")

DEFAULT_CONTENT_PATH = Path(__file__).parent.parent / "data" / "default_site_config.json"


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


@lru_cache(maxsize=1)
def _load_default_content() -> str:
    return DEFAULT_CONTENT_PATH.read_text(encoding="utf-8")


def default_content() -> dict[str, Any]:
    """Fresh copy of the packaged default document."""
    return json.loads(_load_default_content())


def migrate_document(schema_version: int, content: dict[str, Any]) -> dict[str, Any]:
    """
    Upgrade stored content to CURRENT_SCHEMA_VERSION.

    v1 -> v2: drops sections now held in tables and merges missing sections
    over the defaults, with pricingSnapshot merged key by key.
    """
    if schema_version > CURRENT_SCHEMA_VERSION:
        raise ValueError(f"Unsupported site config schema version: {schema_version}")

    upgraded = copy.deepcopy(content)
    if schema_version < 2:
        defaults = default_content()
        for section in LEGACY_SECTIONS:
            upgraded.pop(section, None)
        merged = {**defaults, **upgraded}
        merged["pricingSnapshot"] = {
            **defaults["pricingSnapshot"],
            **(upgraded.get("pricingSnapshot") or {}),
        }
        merged.pop("plans", None)
        merged["pricingSnapshot"].pop("plans", None)
        upgraded = merged
    return upgraded


def row_to_domain(row: SiteDocumentRow) -> SiteDocument:
    """Convert ORM row to domain model."""
    return SiteDocument(
        key=row.key,
        schema_version=row.schema_version,
        revision=row.revision,
        content=row.content,
        updated_at=row.updated_at,
    )


class SiteConfigService:
    """Content store for the site document."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def load_or_default(self, key: str = SITE_CONFIG_KEY) -> SiteDocument:
        """Stored document upgraded to the current schema, or the packaged default."""
        row = await self.session.get(SiteDocumentRow, key)
        if row is None:
            return SiteDocument(
                key=key,
                schema_version=CURRENT_SCHEMA_VERSION,
                revision=0,
                content=default_content(),
                updated_at=None,
            )
        if row.schema_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                "site_config_upgraded_on_read",
                key=key,
                from_version=row.schema_version,
                to_version=CURRENT_SCHEMA_VERSION,
            )
            return SiteDocument(
                key=row.key,
                schema_version=CURRENT_SCHEMA_VERSION,
                revision=row.revision,
                content=migrate_document(row.schema_version, row.content),
                updated_at=row.updated_at,
            )
        return row_to_domain(row)

    async def update(
        self, content: dict[str, Any], expected_revision: int, key: str = SITE_CONFIG_KEY
    ) -> SiteDocument:
        """
        Replace the whole document.

        expected_revision is the revision the editor loaded; 0 means the
        document has never been saved.

        Raises:
            ConcurrencyError: Someone saved since the editor loaded
        """
        row = await self._lock_document(key)
        current = row.revision if row is not None else 0
        if current != expected_revision:
            logger.warning(
                "site_config_stale_write",
                key=key,
                expected_revision=expected_revision,
                current_revision=current,
            )
            raise ConcurrencyError(f"site document {key}")

        row = self._write(row, key, content)
        await self.session.commit()

        logger.info("site_config_updated", key=key, revision=row.revision)
        return row_to_domain(row)

    async def reset(self, key: str = SITE_CONFIG_KEY) -> SiteDocument:
        """Replace the document with the packaged default."""
        row = await self._lock_document(key)
        row = self._write(row, key, default_content())
        await self.session.commit()

        logger.info("site_config_reset", key=key, revision=row.revision)
        return row_to_domain(row)

    def _write(
        self, row: SiteDocumentRow | None, key: str, content: dict[str, Any]
    ) -> SiteDocumentRow:
        if row is None:
            row = SiteDocumentRow(key=key, revision=0)
            self.session.add(row)
        row.schema_version = CURRENT_SCHEMA_VERSION
        row.content = content
        row.revision = row.revision + 1
        row.updated_at = _utc_now()
        return row

    async def _lock_document(self, key: str) -> SiteDocumentRow | None:
        stmt = (
            select(SiteDocumentRow)
            .where(SiteDocumentRow.key == key)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()
