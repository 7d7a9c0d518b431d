"""
Configuration loader for sheet ids, folder ids and cache settings.

Supports loading from:
1. Environment variables (.env.local or deployment secrets)
2. YAML config file (roster.config.yaml, or the path in ROSTER_CONFIG_PATH)

Environment Variable Aliases (checked in order):
- Roster sheet: ROSTER_SHEET_ID
- Final Forms folder: SPS_FINAL_FORMS_FOLDER_ID, FINAL_FORMS_FOLDER_ID
- Mailing list folder: TEAM_MAILING_LIST_FOLDER_ID, MAILING_LIST_FOLDER_ID
- Questionnaire sheet: ADDITIONAL_QUESTIONNAIRE_SHEET_ID, QUESTIONNAIRE_SHEET_ID
- Access token: GOOGLE_ACCESS_TOKEN, GOOGLE_OAUTH_TOKEN

Usage:
    from roster_sync.config import get_config, validate_config

    config = get_config()
    print(config.sheet_sources["ROSTER"].ttl_seconds)

    for issue in validate_config():
        print(issue)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

logger = logging.getLogger(__name__)

# Project root directory
PROJECT_ROOT = Path(__file__).parent.parent

DEFAULT_CONFIG_FILE = PROJECT_ROOT / "roster.config.yaml"


def _load_env_file(env_file: Path = PROJECT_ROOT / ".env.local") -> None:
    """Load environment variables from .env.local if it exists."""
    if not env_file.exists():
        return
    with open(env_file, "r") as f:
        for line in f:
            line = line.strip()
            if line and not line.startswith("#") and "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                # Remove quotes if present
                if value.startswith('"') and value.endswith('"'):
                    value = value[1:-1]
                elif value.startswith("'") and value.endswith("'"):
                    value = value[1:-1]
                os.environ.setdefault(key, value)


def _load_yaml_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """Load overrides from the YAML config file, if present."""
    config_file = path or Path(os.getenv("ROSTER_CONFIG_PATH", DEFAULT_CONFIG_FILE))
    if not config_file.exists():
        return {}
    with open(config_file, "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{config_file}: expected a mapping at the top level")
    logger.debug(f"Loaded config overrides from {config_file}")
    return data


# Environment variable aliases for different deployment environments
# Order matters: first valid value found wins
ENV_VAR_ALIASES: Dict[str, List[str]] = {
    "roster_sheet_id": ["ROSTER_SHEET_ID"],
    "final_forms_folder_id": [
        "SPS_FINAL_FORMS_FOLDER_ID",  # Primary (canonical name)
        "FINAL_FORMS_FOLDER_ID",
    ],
    "mailing_list_folder_id": [
        "TEAM_MAILING_LIST_FOLDER_ID",  # Primary (canonical name)
        "MAILING_LIST_FOLDER_ID",
    ],
    "questionnaire_sheet_id": [
        "ADDITIONAL_QUESTIONNAIRE_SHEET_ID",  # Primary (canonical name)
        "QUESTIONNAIRE_SHEET_ID",
    ],
    "google_access_token": [
        "GOOGLE_ACCESS_TOKEN",
        "GOOGLE_OAUTH_TOKEN",
    ],
}

REQUIRED_SETTINGS = ("roster_sheet_id", "final_forms_folder_id")
OPTIONAL_SETTINGS = ("mailing_list_folder_id", "questionnaire_sheet_id", "google_access_token")


def _is_placeholder(value: Optional[str]) -> bool:
    """Check if a value is a placeholder that should be ignored."""
    if not value:
        return True
    value_lower = value.lower()
    return (
        value_lower.startswith("your_") or
        value_lower.startswith("your-") or
        value_lower == "changeme" or
        value_lower == "placeholder"
    )


def _get_env_with_aliases(
    alias_key: str,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """
    Get an environment variable value, checking multiple aliases.
    Returns (value, var_name) tuple or (None, None) if not found.
    """
    env = os.environ if environ is None else environ
    for var_name in ENV_VAR_ALIASES.get(alias_key, []):
        value = env.get(var_name)
        if value and not _is_placeholder(value):
            return value, var_name
    return None, None


# =============================================================================
# CONFIG TYPES
# =============================================================================

@dataclass(frozen=True)
class SheetSourceConfig:
    """A logical sheet tab in the roster workbook and its raw-tier TTL."""
    name: str
    sheet_name: str
    ttl_seconds: float
    # Read as {text, url} cells so hyperlinks (e.g. practice locations) survive
    with_links: bool = False


DEFAULT_SHEET_SOURCES: Dict[str, SheetSourceConfig] = {
    "ROSTER": SheetSourceConfig("ROSTER", "📋 Roster", 300),
    "PRACTICE_INFO": SheetSourceConfig("PRACTICE_INFO", "📍Practice Info", 300, with_links=True),
    "GAME_INFO": SheetSourceConfig("GAME_INFO", "Game Info", 300),
    # Live-editable attendance sheets
    "PRACTICE_AVAILABILITY": SheetSourceConfig("PRACTICE_AVAILABILITY", "Practice Availability", 60),
    "GAME_AVAILABILITY": SheetSourceConfig("GAME_AVAILABILITY", "Game Availability", 60),
}


@dataclass(frozen=True)
class RosterConfig:
    """Immutable settings handed to every component at construction."""
    roster_sheet_id: Optional[str] = None
    final_forms_folder_id: Optional[str] = None
    mailing_list_folder_id: Optional[str] = None
    questionnaire_sheet_id: Optional[str] = None
    google_access_token: Optional[str] = None

    sheet_sources: Mapping[str, SheetSourceConfig] = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_SHEET_SOURCES))
    )
    questionnaire_range: str = "A:Z"
    computed_ttl_seconds: float = 30 * 60
    portal_ttl_seconds: float = 300

    # Synthesis rate limiting
    batch_size: int = 10
    batch_delay_seconds: float = 2.0
    row_delay_seconds: float = 0.1

    # Roster sheet layout
    metadata_rows: int = 4
    data_start_row: int = 5
    max_column: str = "AZ"
    max_row: int = 1000

    def source(self, logical_name: str) -> SheetSourceConfig:
        try:
            return self.sheet_sources[logical_name]
        except KeyError:
            raise KeyError(f"Unknown sheet type: {logical_name}") from None

    @property
    def metadata_range(self) -> str:
        return f"A1:{self.max_column}{self.metadata_rows}"

    @property
    def data_range(self) -> str:
        return f"A{self.data_start_row}:{self.max_column}{self.max_row}"

    def row_range(self, sheet_row: int) -> str:
        """A1 range covering one full sheet row (1-indexed)."""
        return f"A{sheet_row}:{self.max_column}{sheet_row}"


def _apply_yaml_overrides(config: RosterConfig, overrides: Mapping[str, Any]) -> RosterConfig:
    sources = dict(config.sheet_sources)
    for name, settings in (overrides.get("sheets") or {}).items():
        current = sources.get(name, SheetSourceConfig(name, name, 300))
        settings = settings or {}
        sources[name] = SheetSourceConfig(
            name=name,
            sheet_name=settings.get("sheet_name", current.sheet_name),
            ttl_seconds=float(settings.get("ttl_seconds", current.ttl_seconds)),
            with_links=bool(settings.get("with_links", current.with_links)),
        )

    synthesis = overrides.get("synthesis") or {}
    layout = overrides.get("layout") or {}
    portal = overrides.get("portal") or {}

    return replace(
        config,
        sheet_sources=MappingProxyType(sources),
        portal_ttl_seconds=float(portal.get("ttl_seconds", config.portal_ttl_seconds)),
        batch_size=int(synthesis.get("batch_size", config.batch_size)),
        batch_delay_seconds=float(synthesis.get("batch_delay_seconds", config.batch_delay_seconds)),
        row_delay_seconds=float(synthesis.get("row_delay_seconds", config.row_delay_seconds)),
        metadata_rows=int(layout.get("metadata_rows", config.metadata_rows)),
        data_start_row=int(layout.get("data_start_row", config.data_start_row)),
        max_column=str(layout.get("max_column", config.max_column)),
        max_row=int(layout.get("max_row", config.max_row)),
    )


def load_config(
    environ: Optional[Mapping[str, str]] = None,
    config_path: Optional[Path] = None,
) -> RosterConfig:
    """
    Build a RosterConfig from the environment and optional YAML overrides.

    Environment values take precedence over YAML for ids and tokens.
    """
    env = os.environ if environ is None else environ
    overrides = _load_yaml_config(config_path)

    values: Dict[str, Any] = {}
    for key in ENV_VAR_ALIASES:
        value, _ = _get_env_with_aliases(key, env)
        if value is None:
            yaml_value = (overrides.get("ids") or {}).get(key)
            value = yaml_value if yaml_value and not _is_placeholder(str(yaml_value)) else None
        values[key] = value

    minutes = env.get("CACHE_DURATION_MINUTES") or overrides.get("cache_duration_minutes") or 30
    try:
        computed_ttl = float(minutes) * 60
    except (TypeError, ValueError):
        logger.warning(f"Invalid CACHE_DURATION_MINUTES {minutes!r}, using 30")
        computed_ttl = 30 * 60

    config = RosterConfig(computed_ttl_seconds=computed_ttl, **values)
    return _apply_yaml_overrides(config, overrides)


@lru_cache(maxsize=1)
def get_config() -> RosterConfig:
    """
    Get the process-wide configuration.
    Reads .env.local on first use; real environment variables win.
    """
    _load_env_file()
    return load_config()


def validate_config(config: Optional[RosterConfig] = None) -> List[str]:
    """
    Validate that required ids are configured.
    Returns a list of issues (empty if all is well).
    """
    config = config or get_config()
    issues = []

    for key in REQUIRED_SETTINGS:
        if not getattr(config, key):
            issues.append(f"{key} not configured. Set one of: " + ", ".join(ENV_VAR_ALIASES[key]))

    for key in OPTIONAL_SETTINGS:
        if not getattr(config, key):
            issues.append(f"{key} not configured (optional). Set one of: " + ", ".join(ENV_VAR_ALIASES[key]))

    if config.batch_size < 1:
        issues.append(f"synthesis batch_size must be at least 1, got {config.batch_size}")
    if config.data_start_row <= config.metadata_rows:
        issues.append(
            f"data_start_row ({config.data_start_row}) must come after the "
            f"{config.metadata_rows} metadata rows"
        )

    return issues


def get_detected_env_vars(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Dict[str, Any]]:
    """
    Get information about which environment variables were detected.
    Useful for debugging configuration issues.
    """
    detected = {}
    for key in ENV_VAR_ALIASES:
        value, var_name = _get_env_with_aliases(key, environ)
        if value:
            detected[key] = {
                "var_name": var_name,
                "configured": True,
                "preview": f"{'*' * 8}...{value[-4:]}" if len(value) > 4 else "****",
            }
        else:
            detected[key] = {"var_name": None, "configured": False}
    return detected
