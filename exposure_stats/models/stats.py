"""Hourly publish statistics SQLAlchemy model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from exposure_stats.core.database import Base


class HealthAuthorityStats(Base):
    """Hourly publish statistics for a health authority.

    Primary key is (health_authority_id, hour) so concurrent writers
    for the same hour merge into a single row.
    """

    __tablename__ = "health_authority_stats"

    health_authority_id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        comment="ID of the health authority",
    )
    hour: Mapped[datetime] = mapped_column(
        DateTime,
        primary_key=True,
        index=True,
        comment="Hour bucket (UTC, truncated to hour)",
    )
    publish_count: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        comment="Publishes by platform: [android, ios, other]",
    )
    tek_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Total TEKs published in this hour",
    )
    revision_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Publishes that revised earlier keys",
    )
    oldest_tek_days: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        comment="Oldest TEK age histogram (15 buckets, last is >= 14 days)",
    )
    onset_age_days: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        comment="Symptom onset age histogram (29 buckets, last is >= 28 days)",
    )
    missing_onset: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
        comment="Non-revision publishes without an onset date",
    )

    def __repr__(self) -> str:
        return (
            f"<HealthAuthorityStats {self.health_authority_id} hour={self.hour} "
            f"publishes={sum(self.publish_count or [])}>"
        )
