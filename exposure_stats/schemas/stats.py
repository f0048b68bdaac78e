"""Pydantic schemas for stats API responses."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class HourlyStatsResponse(BaseModel):
    """Publish statistics for one health authority in one hour."""

    model_config = ConfigDict(from_attributes=True)

    hour: datetime = Field(description="Hour bucket (UTC, truncated to hour)")
    publish_count: list[int] = Field(description="Publishes by platform: [android, ios, other]")
    tek_count: int = Field(description="TEKs published in this hour")
    revision_count: int = Field(description="Publishes that revised earlier keys")
    oldest_tek_days: list[int] = Field(description="Oldest TEK age histogram, last bucket is >= 14 days")
    onset_age_days: list[int] = Field(description="Symptom onset age histogram, last bucket is >= 28 days")
    missing_onset: int = Field(description="Non-revision publishes without an onset date")


class HealthAuthorityStatsResponse(BaseModel):
    """Hourly publish statistics for a health authority over a time range."""

    health_authority_id: int
    start: datetime
    end: datetime
    hours: list[HourlyStatsResponse]


class FlushResponse(BaseModel):
    """Result of flushing pending records to the database."""

    records_written: int
