"""
BoostLedger Configuration

Centralized settings, paths, logging and the bonus table.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

import appdirs

from models.bonus import BonusTable, PerPeerBonusConfig, RebirthBonusConfig, RebirthSettings


# Application info
APP_NAME = "BoostLedger"
APP_AUTHOR = "BoostLedger"
APP_VERSION = "1.0.0"


@dataclass(frozen=True)
class Paths:
    """Application paths."""
    # Config directory (stores settings.json with the bonus table)
    config_dir: Path = Path(appdirs.user_config_dir(APP_NAME, APP_AUTHOR))

    # Data directory (stores exported reports)
    data_dir: Path = Path(appdirs.user_data_dir(APP_NAME, APP_AUTHOR))

    # Log directory
    log_dir: Path = Path(appdirs.user_log_dir(APP_NAME, APP_AUTHOR))

    @property
    def settings(self) -> Path:
        return self.config_dir / "settings.json"

    @property
    def exports(self) -> Path:
        return self.data_dir / "exports"

    def ensure_directories(self) -> None:
        """Create all required directories."""
        for dir_path in [self.config_dir, self.data_dir, self.log_dir, self.exports]:
            dir_path.mkdir(parents=True, exist_ok=True)


@dataclass(frozen=True)
class BoostSettings:
    """Defaults for the boost accumulator."""
    # Currency that friends and rebirths boost out of the box
    default_resource: str = "Cash"

    # +10% per friend in the session
    per_peer_magnitude: float = 0.1

    # +25% per rebirth
    per_rebirth_magnitude: float = 0.25


@dataclass(frozen=True)
class RebirthDefaults:
    """Rebirth pricing."""
    cost: float = 1000.0
    cost_scaling: float = 500.0


@dataclass(frozen=True)
class LogSettings:
    """Logging setup."""
    level: int = logging.INFO
    format: str = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
    write_file: bool = True


# Singleton instances
PATHS = Paths()
BOOST_SETTINGS = BoostSettings()
REBIRTH_DEFAULTS = RebirthDefaults()
LOG_SETTINGS = LogSettings()


def default_bonus_table() -> BonusTable:
    """Bonus table used when no settings file exists."""
    resource = BOOST_SETTINGS.default_resource
    return BonusTable(
        per_peer=[PerPeerBonusConfig(
            resource_kind=resource,
            per_peer_magnitude=BOOST_SETTINGS.per_peer_magnitude,
        )],
        rebirth=[RebirthBonusConfig(
            resource_kind=resource,
            per_rebirth_magnitude=BOOST_SETTINGS.per_rebirth_magnitude,
        )],
        rebirth_settings=RebirthSettings(
            resource_kind=resource,
            cost=REBIRTH_DEFAULTS.cost,
            cost_scaling=REBIRTH_DEFAULTS.cost_scaling,
        ),
    )


def load_bonus_table(path: Optional[Path] = None) -> BonusTable:
    """
    Read the bonus table from settings.json.

    Args:
        path: Settings file to read (default: PATHS.settings)

    Returns:
        The parsed table, or the built-in defaults if the file is missing

    Raises:
        ValueError: The file is not valid JSON or fails validation
    """
    path = path or PATHS.settings
    if not path.exists():
        return default_bonus_table()

    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must hold a JSON object, got {type(data).__name__}")
    return BonusTable.model_validate(data.get("bonuses", data))


def save_bonus_table(table: BonusTable, path: Optional[Path] = None) -> Path:
    """Write the bonus table to settings.json."""
    path = path or PATHS.settings
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump({"bonuses": table.model_dump(by_alias=True)}, f, indent=2)
    return path


def configure_logging(level: Optional[int] = None, log_dir: Optional[Path] = None) -> logging.Logger:
    """
    Install console and per-run file handlers on the root logger.

    Calling it again replaces the handlers it installed before.
    """
    root = logging.getLogger()
    root.setLevel(level if level is not None else LOG_SETTINGS.level)

    for handler in list(root.handlers):
        if getattr(handler, "_boostledger", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_SETTINGS.format)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    console._boostledger = True
    root.addHandler(console)

    if LOG_SETTINGS.write_file:
        log_dir = log_dir or PATHS.log_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        file_handler = logging.FileHandler(log_dir / f"boostledger-{timestamp}.log", encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._boostledger = True
        root.addHandler(file_handler)

    return root


def init_config() -> None:
    """Initialize configuration, directories and logging."""
    PATHS.ensure_directories()
    configure_logging()
