"""Data models shared by the service, the coordinator and the HTTP layer."""

from datetime import datetime
from datetime import timezone
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic.alias_generators import to_camel


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with upstream timestamps."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CamelModel(BaseModel):
    """Model that reads and writes camelCase field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlayerRecord(CamelModel):
    """One player's presence on one game server."""

    id: str = Field(description="Presence id (player-on-gameserver)")
    player_id: str = Field(description="Stable player id")
    name: str = "Unknown"
    steam_id: str | None = None
    x: float | None = None
    y: float | None = None
    z: float | None = None
    online: bool = False
    last_seen: datetime | None = None
    ping: float | None = None
    currency: float | None = None
    playtime_seconds: float | None = None

    @field_validator("last_seen")
    @classmethod
    def _last_seen_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @classmethod
    def from_upstream(cls, pog: dict[str, Any]) -> "PlayerRecord":
        """Normalize a player-on-gameserver record extended with its player."""
        player = pog.get("player") or {}
        return cls(
            id=pog["id"],
            player_id=pog["playerId"],
            name=player.get("name") or "Unknown",
            steam_id=player.get("steamId"),
            x=pog.get("positionX"),
            y=pog.get("positionY"),
            z=pog.get("positionZ"),
            online=bool(pog.get("online") or False),
            last_seen=pog.get("lastSeen"),
            ping=pog.get("ping"),
            currency=pog.get("currency"),
            playtime_seconds=pog.get("playtimeSeconds"),
        )

    def seen_between(self, start: datetime, end: datetime) -> bool:
        """Whether an online player, or an offline one last seen in [start, end]."""
        if self.online:
            return True
        if self.last_seen is None:
            return False
        return start <= self.last_seen <= end


class MovementPoint(BaseModel):
    x: float
    y: float
    z: float
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _timestamp_utc(cls, value: datetime) -> datetime:
        return as_utc(value)


class MovementPath(BaseModel):
    name: str
    points: list[MovementPoint] = Field(default_factory=list)


class AreaBox(CamelModel):
    game_server_id: str
    min_x: float
    max_x: float
    min_y: float = -10_000
    max_y: float = 10_000
    min_z: float
    max_z: float
    start_date: datetime | None = None
    end_date: datetime | None = None


class AreaRadius(CamelModel):
    game_server_id: str
    x: float
    y: float = 0
    z: float
    radius: float = Field(gt=0)
    start_date: datetime | None = None
    end_date: datetime | None = None


class ItemSearch(CamelModel):
    item_id: str
    start_date: datetime | None = None
    end_date: datetime | None = None


class GiveItem(CamelModel):
    game_server_id: str
    item_name: str
    amount: int = Field(gt=0)
    quality: str = "1"


class AddCurrency(CamelModel):
    game_server_id: str
    currency: int


class DomainSelection(CamelModel):
    domain_id: str
