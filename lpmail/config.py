"""Pipeline configuration, read from the environment (and .env via python-dotenv)."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    logger.warning("Invalid %s %r; defaulting to %s", name, raw, default)
    return default


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %d", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s must be >= %d, got %d; defaulting to %d", name, minimum, value, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid %s %r; defaulting to %s", name, raw, default)
        return default


@dataclass
class PipelineConfig:
    """Tunables for parsing, bulk reparse and ingestion."""

    anthropic_api_key: str = ""
    db_path: Path = field(default_factory=lambda: Path("data/lpmail.db"))
    organization_id: str = ""
    batch_size: int = 5
    bulk_timeout_seconds: float = 300.0
    classify_timeout_seconds: float = 30.0
    lp_limit: int = 500
    deal_limit: int = 100
    reparse_limit: int = 500
    confidence_threshold: float = 0.7
    forward_only_last_interaction: bool = True
    use_ai_on_ingest: bool = False

    @property
    def ai_enabled(self) -> bool:
        """True when an Anthropic key is available to the classifier."""
        return bool(self.anthropic_api_key)

    @classmethod
    def from_env(cls) -> PipelineConfig:
        """Build PipelineConfig from environment variables."""
        return cls(
            anthropic_api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            db_path=Path(os.environ.get("LPMAIL_DB_PATH", "data/lpmail.db")),
            organization_id=os.environ.get("LPMAIL_ORG_ID", ""),
            batch_size=_env_int("LPMAIL_BATCH_SIZE", 5),
            bulk_timeout_seconds=_env_float("LPMAIL_BULK_TIMEOUT_SECONDS", 300.0),
            classify_timeout_seconds=_env_float("LPMAIL_CLASSIFY_TIMEOUT_SECONDS", 30.0),
            lp_limit=_env_int("LPMAIL_LP_LIMIT", 500),
            deal_limit=_env_int("LPMAIL_DEAL_LIMIT", 100),
            reparse_limit=_env_int("LPMAIL_REPARSE_LIMIT", 500),
            confidence_threshold=_env_float("LPMAIL_CONFIDENCE_THRESHOLD", 0.7),
            forward_only_last_interaction=_env_bool("LPMAIL_FORWARD_ONLY_LAST_INTERACTION", True),
            use_ai_on_ingest=_env_bool("LPMAIL_USE_AI_ON_INGEST", False),
        )
