"""
Audience resolution - turns an AudienceFilter into a concrete set of lead IDs.
Opted-out leads are always excluded, whatever the filter says.
Results are deterministic: ordered by created_at, then id.
"""
import logging
import uuid
from typing import Optional, Union

from sqlalchemy import and_, func, literal, select
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.database import dialect_name
from cadence.models.lead import Lead
from cadence.schemas.audience_filter import AudienceFilter

logger = logging.getLogger(__name__)


class AudienceResolutionError(Exception):
    """The lead store could not evaluate the filter. Safe to retry."""
    pass


def _tags_overlap(tags: list[str], dialect: str):
    """Lead has at least one of the given tags."""
    if dialect == "postgresql":
        return Lead.tags.has_any(postgresql.array(tags))
    # SQLite (tests): expand the JSON array and look for any match
    tag_values = func.json_each(Lead.tags).table_valued("value").alias("tag_values")
    return (
        select(literal(1))
        .select_from(tag_values)
        .where(tag_values.c.value.in_(tags))
        .correlate(Lead)
        .exists()
    )


def build_conditions(
    organization_id: uuid.UUID,
    audience_filter: AudienceFilter,
    dialect: str = "postgresql",
) -> list:
    """WHERE clauses for a filter. Organization scope and opt-out exclusion are always included."""
    f = audience_filter
    conditions = [
        Lead.organization_id == organization_id,
        Lead.opted_out.is_(False),
    ]

    if f.status is not None:
        conditions.append(Lead.status == f.status)
    if f.source is not None:
        conditions.append(Lead.source == f.source)
    if f.assigned_to is not None:
        conditions.append(Lead.assigned_to == f.assigned_to)

    # has_phone/has_email only narrow when true; false means "no constraint"
    if f.has_phone:
        conditions.append(and_(Lead.phone.is_not(None), Lead.phone != ""))
    if f.has_email:
        conditions.append(and_(Lead.email.is_not(None), Lead.email != ""))

    # Score range excludes never-scored leads
    if f.score_min is not None:
        conditions.append(Lead.score >= f.score_min)
    if f.score_max is not None:
        conditions.append(Lead.score <= f.score_max)

    if f.tags:
        conditions.append(_tags_overlap(f.tags, dialect))

    if f.created_after is not None:
        conditions.append(Lead.created_at >= f.created_after)
    if f.created_before is not None:
        conditions.append(Lead.created_at <= f.created_before)
    if f.last_contact_after is not None:
        conditions.append(Lead.last_contact_at >= f.last_contact_after)
    if f.last_contact_before is not None:
        conditions.append(Lead.last_contact_at <= f.last_contact_before)

    return conditions


def _coerce_filter(audience_filter: Union[AudienceFilter, dict, None]) -> AudienceFilter:
    if isinstance(audience_filter, AudienceFilter):
        return audience_filter
    return AudienceFilter.from_config(audience_filter)


async def resolve_audience(
    db: AsyncSession,
    organization_id: uuid.UUID,
    audience_filter: Union[AudienceFilter, dict, None],
    limit: Optional[int] = None,
) -> list[uuid.UUID]:
    """
    Resolve a filter to the matching lead IDs for one organization.

    Returns an empty list when nothing matches.
    Raises AudienceResolutionError if the store query fails.
    """
    f = _coerce_filter(audience_filter)
    query = (
        select(Lead.id)
        .where(*build_conditions(organization_id, f, dialect_name(db)))
        .order_by(Lead.created_at, Lead.id)
    )
    if limit is not None:
        query = query.limit(limit)

    try:
        result = await db.execute(query)
    except SQLAlchemyError as e:
        logger.error(
            "Audience resolution failed for org %s: %s",
            str(organization_id)[:8], str(e),
        )
        raise AudienceResolutionError(str(e)) from e

    lead_ids = list(result.scalars().all())
    logger.debug(
        "Resolved %d leads for org %s (filter=%s)",
        len(lead_ids), str(organization_id)[:8], f.to_config(),
    )
    return lead_ids


async def count_audience(
    db: AsyncSession,
    organization_id: uuid.UUID,
    audience_filter: Union[AudienceFilter, dict, None],
) -> int:
    """Count leads matching a filter (preview / cached_count snapshots)."""
    f = _coerce_filter(audience_filter)
    query = select(func.count(Lead.id)).where(
        *build_conditions(organization_id, f, dialect_name(db))
    )
    try:
        result = await db.execute(query)
    except SQLAlchemyError as e:
        logger.error(
            "Audience count failed for org %s: %s",
            str(organization_id)[:8], str(e),
        )
        raise AudienceResolutionError(str(e)) from e
    return result.scalar() or 0
