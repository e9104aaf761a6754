import json

import pandas as pd
import pytest

from schoolcafe_dashboard.models import DateRange
from schoolcafe_dashboard.state import AppStateStore, profile_cache_entry


def test_defaults():
    store = AppStateStore(path=None)
    assert store.state.selected_timeframe == "month"
    assert store.state.dark_mode is False
    assert store.state.user is None


def test_persisted_slice_round_trips(tmp_path, profile):
    path = tmp_path / "state.json"
    store = AppStateStore(path)
    store.set_user(profile)
    store.set_selected_timeframe("week")
    store.toggle_dark_mode()
    store.set_custom_date_range(DateRange(pd.Timestamp("2024-01-03"), pd.Timestamp("2024-01-05")))
    store.set_cached_profile(profile_cache_entry(profile))

    saved = json.loads(path.read_text())
    assert set(saved) == {"dark_mode", "cached_profile", "selected_timeframe", "custom_date_range"}
    assert saved["cached_profile"] == {"email": "director@d1.org", "name": "Director", "avatar_url": None}

    restored = AppStateStore(path).state
    assert restored.selected_timeframe == "week"
    assert restored.dark_mode is True
    assert restored.custom_date_range.start == pd.Timestamp("2024-01-03")
    assert restored.user is None


def test_user_change_does_not_write(tmp_path, profile):
    path = tmp_path / "state.json"
    AppStateStore(path).set_user(profile)
    assert not path.exists()


def test_unknown_timeframe_rejected():
    store = AppStateStore(path=None)
    with pytest.raises(ValueError):
        store.set_selected_timeframe("quarter")


def test_listeners_see_old_and_new_state():
    store = AppStateStore(path=None)
    seen = []
    store.subscribe(lambda old, new: seen.append((old.selected_timeframe, new.selected_timeframe)))

    store.set_selected_timeframe("year")
    store.set_selected_timeframe("year")

    assert seen == [("month", "year")]


def test_unsubscribed_listener_not_called():
    store = AppStateStore(path=None)
    seen = []

    def listener(old, new):
        seen.append(new)

    store.subscribe(listener)
    store.unsubscribe(listener)
    store.toggle_dark_mode()
    assert seen == []


def test_corrupt_file_keeps_defaults(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json")
    assert AppStateStore(path).state.selected_timeframe == "month"


def test_unknown_persisted_timeframe_falls_back(tmp_path):
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"selected_timeframe": "quarter", "dark_mode": True}))
    state = AppStateStore(path).state
    assert state.selected_timeframe == "month"
    assert state.dark_mode is True
