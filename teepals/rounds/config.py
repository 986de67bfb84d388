"""Configuration for the rounds service."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class RoundSettings(BaseSettings):
    """Rounds service settings."""

    model_config = {"env_file": ".env", "env_prefix": "ROUND_", "case_sensitive": False, "extra": "ignore"}

    # Capacity
    default_max_players: int = 4
    max_players_limit: int = 16

    # Per-round serialization
    lock_timeout_seconds: float = 5.0

    # Storage backend: "memory" or "postgres"
    store_backend: str = "memory"

    # Pagination
    default_page_size: int = 50
    max_page_size: int = 100

    # Logging
    log_level: str = "INFO"
    log_json: bool = True


# Notification type per round event, as delivered to the inbox service.
# Joins, leaves and removals have no client-side type and stay silent.
NOTIFICATION_TYPES: dict[str, str] = {
    "member.requested": "roundJoinRequest",
    "member.accepted": "roundJoinAccepted",
    "member.declined": "roundJoinDeclined",
    "member.invited": "roundInvitation",
    "round.canceled": "roundCancelled",
    "round.updated": "roundUpdated",
    "round.completed": "feedbackReminder",
}


@lru_cache
def get_round_settings() -> RoundSettings:
    """Get cached round settings instance."""
    return RoundSettings()
