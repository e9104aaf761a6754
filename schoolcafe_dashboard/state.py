"""
Application-state container.

Holds the signed-in profile, the selected timeframe and custom range, and
display preferences. Only dark_mode, cached_profile, selected_timeframe and
custom_date_range survive a restart: they are written as JSON every time
one of them changes. Everything else lives for the session only.
"""

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, replace
from pathlib import Path

import pandas as pd

from .config import DEFAULT_TIMEFRAME, STATE_FILE, TIMEFRAMES
from .models import DateRange, Profile

logger = logging.getLogger(__name__)

PERSISTED_FIELDS = ("dark_mode", "cached_profile", "selected_timeframe", "custom_date_range")


@dataclass(frozen=True)
class AppState:
    user: Profile | None = None
    selected_timeframe: str = DEFAULT_TIMEFRAME
    custom_date_range: DateRange | None = None
    dark_mode: bool = False
    cached_profile: dict | None = None

    def to_persisted(self) -> dict:
        custom = None
        if self.custom_date_range is not None:
            custom = {
                "start": self.custom_date_range.start.isoformat(),
                "end": self.custom_date_range.end.isoformat(),
            }
        return {
            "dark_mode": self.dark_mode,
            "cached_profile": self.cached_profile,
            "selected_timeframe": self.selected_timeframe,
            "custom_date_range": custom,
        }

    @classmethod
    def from_persisted(cls, data: dict) -> "AppState":
        timeframe = data.get("selected_timeframe", DEFAULT_TIMEFRAME)
        if timeframe not in TIMEFRAMES:
            logger.warning("Ignoring unknown persisted timeframe '%s'", timeframe)
            timeframe = DEFAULT_TIMEFRAME

        custom = None
        raw = data.get("custom_date_range")
        if isinstance(raw, dict) and raw.get("start") and raw.get("end"):
            try:
                custom = DateRange(pd.Timestamp(raw["start"]), pd.Timestamp(raw["end"]))
            except (TypeError, ValueError):
                logger.warning("Ignoring unparseable persisted custom range %s", raw)

        return cls(
            selected_timeframe=timeframe,
            custom_date_range=custom,
            dark_mode=bool(data.get("dark_mode", False)),
            cached_profile=data.get("cached_profile"),
        )


class AppStateStore:
    """Observable state container with a JSON persistence boundary.

    Pass path=None for a store that never touches disk.
    """

    def __init__(self, path: str | Path | None = STATE_FILE, autoload: bool = True) -> None:
        self.path = Path(path) if path is not None else None
        self._state = AppState()
        self._listeners: list[Callable[[AppState, AppState], None]] = []
        if autoload:
            self.load()

    @property
    def state(self) -> AppState:
        return self._state

    def subscribe(self, listener: Callable[[AppState, AppState], None]) -> None:
        """Register listener(old_state, new_state), called after every change."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[AppState, AppState], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------
    def set_user(self, user: Profile | None) -> None:
        self._commit(user=user)

    def set_selected_timeframe(self, timeframe: str) -> None:
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"Unknown timeframe '{timeframe}'. Expected one of {TIMEFRAMES}")
        self._commit(selected_timeframe=timeframe)

    def set_custom_date_range(self, date_range: DateRange | None) -> None:
        self._commit(custom_date_range=date_range)

    def toggle_dark_mode(self) -> None:
        self._commit(dark_mode=not self._state.dark_mode)

    def set_cached_profile(self, profile: dict | None) -> None:
        self._commit(cached_profile=profile)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def load(self) -> AppState:
        """Restore the persisted slice; a missing or corrupt file keeps defaults."""
        if self.path is None or not self.path.exists():
            return self._state
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            logger.warning("Could not read state file %s, using defaults", self.path)
            return self._state
        if not isinstance(data, dict):
            logger.warning("State file %s does not hold an object, using defaults", self.path)
            return self._state

        self._state = replace(AppState.from_persisted(data), user=self._state.user)
        logger.info("Restored application state from %s", self.path)
        return self._state

    def save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._state.to_persisted(), indent=2), encoding="utf-8")

    def _commit(self, **changes) -> None:
        old = self._state
        new = replace(old, **changes)
        if new == old:
            return
        self._state = new
        if any(name in PERSISTED_FIELDS for name in changes):
            self.save()
        for listener in list(self._listeners):
            listener(old, new)


def profile_cache_entry(profile: Profile) -> dict:
    """The subset of a profile kept across restarts."""
    data = asdict(profile)
    return {
        "email": data["email"],
        "name": data["name"],
        "avatar_url": data["avatar_url"],
    }
