"""
Engine settings.

Every business threshold the engine applies lives here with its default
value, so the $70 benchmark and the coaching cutoff are parameters rather
than constants buried in the alert logic.
"""

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .exceptions import SettingsError

DEFAULT_SETTINGS_FILE = "ticket_ledger.json"


class TableNames(BaseModel):
    """Storage tables holding the three ticket streams."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    sales: str = "sales"
    returns: str = "returns"
    gift_cards: str = "giftcards"


class EngineSettings(BaseModel):
    """Thresholds and limits for one engine instance."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Alerting
    benchmark: float = Field(default=70.0, gt=0, description="Minimum acceptable average ticket size")
    coaching_ratio: float = Field(
        default=0.5, ge=0, le=1, description="Underperforming-day share above which coaching is needed"
    )
    min_day_tickets: int = Field(default=1, ge=1, description="Tickets needed for a day to count as worked")
    max_alerts: int = Field(default=50, ge=1)

    # Leaderboards
    leaderboard_size: int = Field(default=5, ge=1)

    # Scheduling
    min_tickets: int = Field(default=5, ge=1, description="Tickets a rep needs at a store to be ranked")
    shifts_per_day: int = Field(default=8, ge=1)
    top_reps_for_projection: int = Field(default=3, ge=1)
    relocation_percentile: float = Field(default=0.8, gt=0, le=1)
    relocation_ratio: float = Field(default=0.8, gt=0, le=1)
    top_overall_reps: int = Field(default=10, ge=1)

    # Tickets from these store/rep ids are kept out of rep-level views
    online_channel_ids: tuple[str, ...] = ("ONLINE",)

    # Retrieval
    safety_row_limit: int = Field(default=200_000, ge=1)
    fallback_row_limit: int = Field(default=100_000, ge=1)
    fetch_timeout_seconds: float = Field(default=30.0, gt=0)
    fetch_workers: int = Field(default=3, ge=1, le=3)
    tables: TableNames = Field(default_factory=TableNames)

    @model_validator(mode="after")
    def _check_limits(self) -> "EngineSettings":
        if self.fallback_row_limit > self.safety_row_limit:
            raise ValueError("fallback_row_limit must not exceed safety_row_limit")
        return self

    @classmethod
    def from_file(cls, path: str | Path) -> "EngineSettings":
        path = Path(path)
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise SettingsError("file not found", file_path=path) from e
        except json.JSONDecodeError as e:
            raise SettingsError(f"invalid JSON ({e})", file_path=path) from e

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise SettingsError(str(e), file_path=path) from e


def load_settings(
    settings_path: str | Path | None = None,
    settings_name: str = DEFAULT_SETTINGS_FILE,
) -> EngineSettings:
    """
    Load engine settings.

    An explicit path must exist. Without one, the working directory and its
    config/ folder are searched, and defaults are used if nothing is found.

    Raises:
        SettingsError: If the file is missing (explicit path) or invalid
    """
    if settings_path is not None:
        settings_path = Path(settings_path)
        if settings_path.is_dir():
            settings_path = settings_path / settings_name
        return EngineSettings.from_file(settings_path)

    for candidate in (Path.cwd() / settings_name, Path.cwd() / "config" / settings_name):
        if candidate.exists():
            return EngineSettings.from_file(candidate)

    return EngineSettings()
