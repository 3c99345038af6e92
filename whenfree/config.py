"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import date
from pathlib import Path
from typing import Any, Dict, List

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.exceptions import InvalidEventConfig
from .domain.models import EventConfig, EventType, ParticipantDocument
from .domain.slots import WEEKDAYS, split_slot_id


def _read_yaml_mapping(path: Path, kind: str) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(
            f"{kind} file not found: {path}\n"
            f"See the example files in the project root for reference."
        )

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ValueError(f"{kind} file must contain a mapping at the root level.")

    return data


class SyncSettings(BaseModel):
    """Limits for calendar synchronization and saving."""
    fetch_timeout_seconds: float = 30.0
    max_retries: int = 3
    max_occurrences_per_rule: int = 1000
    client_cache_ttl_seconds: float = 1800.0
    save_retries: int = 3

    @field_validator("fetch_timeout_seconds", "client_cache_ttl_seconds")
    @classmethod
    def validate_positive_seconds(cls, value: float) -> float:
        """Ensure durations are positive."""
        if value <= 0:
            raise ValueError("Durations must be greater than zero")
        return value

    @field_validator("max_retries", "max_occurrences_per_rule", "save_retries")
    @classmethod
    def validate_positive_count(cls, value: int) -> int:
        if value < 1:
            raise ValueError(f"Counts must be at least 1, got {value}")
        return value


class GoogleSettings(BaseModel):
    """OAuth client used to refresh Google Calendar access tokens."""
    client_id: str = ""
    client_secret: str = ""
    calendar_id: str = "primary"


class CalDAVSettings(BaseModel):
    server_url: str = "https://caldav.icloud.com"

    @field_validator("server_url")
    @classmethod
    def validate_server_url(cls, value: str) -> str:
        if not value.startswith(("https://", "http://")):
            raise ValueError(f"server_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")


class FeatureFlags(BaseModel):
    """Switches for features that are not generally available yet."""
    enable_if_needed: bool = False


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "Asia/Seoul"
    sync: SyncSettings = Field(default_factory=SyncSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    caldav: CalDAVSettings = Field(default_factory=CalDAVSettings)
    features: FeatureFlags = Field(default_factory=FeatureFlags)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        return cls(**_read_yaml_mapping(config_path, "Config"))


class EventSettings(BaseModel):
    """Event shape as written in an event file."""
    event_type: EventType = EventType.DATE
    start_time: str
    end_time: str
    start_date: date | None = None
    end_date: date | None = None
    selected_dates: List[str] = Field(default_factory=list)
    selected_days: List[str] = Field(default_factory=list)

    @field_validator("selected_days")
    @classmethod
    def validate_days(cls, value: List[str]) -> List[str]:
        """Ensure weekday tokens are known."""
        invalid = [day for day in value if day not in WEEKDAYS]
        if invalid:
            raise ValueError(f"selected_days must be among {list(WEEKDAYS)}, got {invalid}")
        return value

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def coerce_clock(cls, value: Any) -> Any:
        # YAML reads an unquoted 09:00 as a sexagesimal integer
        if isinstance(value, int):
            return f"{value // 60:02d}:{value % 60:02d}"
        return value

    def to_event_config(self) -> EventConfig:
        try:
            return EventConfig(
                event_type=self.event_type,
                start_time=self.start_time,
                end_time=self.end_time,
                start_date=self.start_date,
                end_date=self.end_date,
                selected_dates=tuple(self.selected_dates),
                selected_days=tuple(self.selected_days),
            )
        except InvalidEventConfig as exc:
            raise ValueError(str(exc)) from exc


class ParticipantEntry(BaseModel):
    """One respondent of an event file."""
    id: str
    name: str
    photo_url: str | None = None
    is_guest: bool = False
    unavailable: List[str] = Field(default_factory=list)
    if_needed: List[str] = Field(default_factory=list)

    @field_validator("unavailable", "if_needed")
    @classmethod
    def validate_slot_ids(cls, value: List[str]) -> List[str]:
        for slot_id in value:
            split_slot_id(slot_id)
        return value

    def to_document(self) -> ParticipantDocument:
        unavailable = list(dict.fromkeys(self.unavailable))
        return ParticipantDocument(
            user_id=self.id,
            display_name=self.name,
            photo_url=self.photo_url,
            is_guest=self.is_guest,
            unavailable=unavailable,
            if_needed=[slot for slot in dict.fromkeys(self.if_needed) if slot not in unavailable],
        )


class EventFile(BaseModel):
    """An event together with its responses, as used by the CLI."""
    name: str = "Untitled"
    event: EventSettings
    participants: List[ParticipantEntry] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_event(self) -> "EventFile":
        """Ensure the event defines a slot universe and ids are unique."""
        config = self.event.to_event_config()
        seen: set[str] = set()
        for participant in self.participants:
            if participant.id in seen:
                raise ValueError(f"Duplicate participant id detected: {participant.id}")
            seen.add(participant.id)
            outside = [
                slot_id for slot_id in participant.unavailable + participant.if_needed
                if not config.contains(slot_id)
            ]
            if outside:
                raise ValueError(
                    f"Participant {participant.id} marks slots outside the event: {outside[:3]}"
                )
        return self

    @property
    def config(self) -> EventConfig:
        return self.event.to_event_config()

    def documents(self) -> List[ParticipantDocument]:
        return [participant.to_document() for participant in self.participants]

    @classmethod
    def load_from_yaml(cls, path: Path) -> "EventFile":
        """
        Load an event file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not a valid event
        """
        return cls(**_read_yaml_mapping(path, "Event"))


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of whenfree/)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
