"""Runtime settings read from the environment, plus logging setup."""
import logging
import os
from dataclasses import dataclass

from dose_concentration import DEFAULT_DISPLAY_WINDOW_DAYS


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    return int(raw) if raw.isdigit() else default


@dataclass(frozen=True)
class TrackerSettings:
    data_path: str = "data/entries.json"
    outputs_dir: str = "outputs"
    display_window_days: int = DEFAULT_DISPLAY_WINDOW_DAYS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "TrackerSettings":
        return cls(
            data_path=os.environ.get("TRACKER_DATA_PATH", "") or cls.data_path,
            outputs_dir=os.environ.get("TRACKER_OUTPUTS_DIR", "") or cls.outputs_dir,
            display_window_days=_env_int("TRACKER_DISPLAY_WINDOW_DAYS", DEFAULT_DISPLAY_WINDOW_DAYS),
            log_level=(os.environ.get("TRACKER_LOG_LEVEL", "") or cls.log_level).upper(),
        )


def setup_logging(level: str = "INFO") -> None:
    """Configure console logging once; later calls leave handlers alone."""
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, level.upper(), logging.INFO),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            handlers=[logging.StreamHandler()],
        )
