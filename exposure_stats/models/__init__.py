"""Exposure stats SQLAlchemy models."""

from exposure_stats.core.database import Base
from exposure_stats.models.stats import HealthAuthorityStats

__all__ = ["Base", "HealthAuthorityStats"]
