"""Pydantic schemas for publish events delivered to the stats service."""

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class PublishEvent(BaseModel):
    """Summary of one publish of temporary exposure keys (TEKs).

    Built by the publish handler from an accepted upload. Only structure is
    validated here, and every field is required so an incomplete message
    is rejected rather than counted. Out of range values are absorbed by
    the aggregator.
    """

    model_config = ConfigDict(frozen=True)

    platform: str = Field(description="Uploading platform: 'Android', 'iOS' or anything else")
    num_teks: int = Field(description="Number of TEKs in the publish")
    revision: bool = Field(description="Whether this publish revises earlier keys")
    oldest_days: int = Field(description="Age in days of the oldest TEK in the publish")
    onset_days_ago: int = Field(description="Days since symptom onset")
    missing_onset: bool = Field(description="Whether no onset date was provided")


class PublishNotification(BaseModel):
    """Publish event envelope carried on the Redis Pub/Sub channel."""

    health_authority_id: int = Field(description="ID of the verifying health authority")
    published_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the publish was accepted",
    )
    publish: PublishEvent

    model_config = {"json_schema_extra": {"example": {
        "health_authority_id": 1,
        "published_at": "2020-10-15T10:30:00Z",
        "publish": {
            "platform": "Android",
            "num_teks": 14,
            "revision": False,
            "oldest_days": 14,
            "onset_days_ago": 4,
            "missing_onset": False,
        },
    }}}
