import json
from pathlib import Path
from tkeep.common.logger import log
from tkeep.common.setup import PATHS
from tkeep.core.snapshot import SnapshotScheduler
from tkeep.core.storage import Storage
from tkeep.core.tracker import Tracker
from tkeep.util import now_iso


_SCHEMA_VERSION = 1

#region === Helpers and Paths ===

SETTINGS_PATH = PATHS.data / "settings.json"
DEFAULT_DATA_FILE = "events.log"

# Default values for the settings dict. Empty paths mean the default location under PATHS.data (and no
# backup at all for backup_file).
_SETTINGS_DEFAULTS = {
    "data_file": "",
    "backup_file": "",
    "num_timers": 10,
    "keep_event_history_days": 7,
    "default_active_timer": 0,
    "pause_on_suspend": True,
    "max_tick_gap": 30,
    "snapshot_min_minutes": 5,
    "timeline": {
        "min_gap": 2 * 60,
        "min_period": 2 * 60,
        "round": 5 * 60,
        "discard": [0],
    },
}

# Helper to return a truly fresh, default settings dict.
def build_default_settings():
    settings = json.loads(json.dumps(_SETTINGS_DEFAULTS))
    settings["meta"] = {"schema_version": _SCHEMA_VERSION, "saved_at": now_iso()}
    return settings

# bool is an int as far as isinstance is concerned, which is never what a setting means
def _type_matches(value, default):
    if isinstance(default, bool) or isinstance(value, bool):
        return isinstance(value, bool) and isinstance(default, bool)
    return isinstance(value, type(default))

# Fills in missing or mistyped keys of values from defaults, recording each defaulted key (with prefix) in
# defaulted_values. Nested dicts are validated the same way.
def _fill_defaults(values, defaults, prefix, defaulted_values):
    for key, default in defaults.items():
        if key not in values or not _type_matches(values[key], default):
            defaulted_values.add(f"{prefix}{key}")
            values[key] = json.loads(json.dumps(default))
        elif isinstance(default, dict):
            _fill_defaults(values[key], default, f"{prefix}{key}.", defaulted_values)

#endregion === Helpers and Paths ===

#region === Saving and Loading Settings ===

# Loads the settings from settings.json, making sure every setting is present and of the right type, and
# handling default fallbacks.
def load_settings(path=None):
    path = Path(path) if path is not None else SETTINGS_PATH
    try:
        if not path.exists():
            log.info(f"No existing settings found at '{path}', loading fresh settings dict.")
            return build_default_settings()

        with open(path, "r", encoding="utf-8") as f:
            settings = json.load(f)
        if not isinstance(settings, dict):
            raise TypeError(f"Expected a JSON object in '{path}', got {type(settings).__name__}")
        defaulted_values = set()

        # Validate the meta dict
        if "meta" not in settings or not isinstance(settings["meta"], dict):
            defaulted_values.add("meta")
            settings["meta"] = {}
        if "schema_version" not in settings["meta"] or not isinstance(settings["meta"]["schema_version"], int):
            defaulted_values.add("meta.schema_version")
            settings["meta"]["schema_version"] = _SCHEMA_VERSION

        _fill_defaults(settings, _SETTINGS_DEFAULTS, "", defaulted_values)

        # Log results
        if defaulted_values:
            log.warning(f"Successfully loaded settings from '{path}', but with missing values that were defaulted: {', '.join(sorted(defaulted_values))}")
        else:
            log.info(f"Successfully loaded settings from '{path}'.")
        return settings
    # Fall back to fresh settings in case of error, but warn in log
    except (json.JSONDecodeError, OSError, TypeError):
        log.warning(f"Ran into an error while trying to load '{path}', falling back to fresh settings.", exc_info=True)
        return build_default_settings()

# Write the given settings to disk.
def save_settings(settings, path=None):
    path = Path(path) if path is not None else SETTINGS_PATH
    settings.setdefault("meta", {"schema_version": _SCHEMA_VERSION})
    settings["meta"]["saved_at"] = now_iso()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(settings, f, indent=2)
    log.info(f"Successfully saved settings to '{path}'")

#endregion === Saving and Loading Settings ===

#region === Runtime objects ===

# Relative paths are taken relative to the data directory.
def resolve_path(name, default=None):
    if not name:
        if default is None:
            return None
        name = default
    path = Path(name).expanduser()
    if not path.is_absolute():
        path = PATHS.data / path
    return path

def build_storage(settings, clock=None):
    data_path = resolve_path(settings["data_file"], DEFAULT_DATA_FILE)
    backup_path = resolve_path(settings["backup_file"])
    log.info(f"Using data file '{data_path}'" + (f" with backup '{backup_path}'" if backup_path else ""))
    return Storage(data_path, backup_path=backup_path, keep_days=settings["keep_event_history_days"], clock=clock)

def build_tracker(settings, storage=None, clock=None):
    storage = storage or build_storage(settings, clock=clock)
    scheduler = SnapshotScheduler(min_interval=settings["snapshot_min_minutes"] * 60)
    return Tracker(
        storage,
        num_timers=settings["num_timers"],
        default_timer=settings["default_active_timer"],
        pause_on_suspend=settings["pause_on_suspend"],
        max_tick_gap=settings["max_tick_gap"],
        scheduler=scheduler,
    )

#endregion === Runtime objects ===
