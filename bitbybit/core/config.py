import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Resolve storage path relative to project root, not the current working directory.
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_PDF_STORAGE_PATH = PROJECT_ROOT / "storage" / "pdfs"
PDF_STORAGE_PATH = Path(os.getenv("PDF_STORAGE_PATH", str(DEFAULT_PDF_STORAGE_PATH))).resolve()
MAX_FILE_SIZE_MB = int(os.getenv("MAX_PDF_SIZE_MB", "100"))

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY") or None
CLASSIFIER_MODEL = os.getenv("CLASSIFIER_MODEL", "claude-sonnet-4-20250514")
CLASSIFIER_MAX_TOKENS = int(os.getenv("CLASSIFIER_MAX_TOKENS", "4096"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MIN_DWELL_SECONDS = 1
MAX_DWELL_SECONDS = 30
SCROLL_END_PROXIMITY = 50


class TrackingMode(str, Enum):
    DWELL = "dwell"
    SCROLL = "scroll"


@dataclass(frozen=True)
class StructuringConfig:
    """Knobs for outline/batch structuring."""

    pages_per_batch: int = 10
    claim_timeout_minutes: int = 30

    def __post_init__(self) -> None:
        if self.pages_per_batch < 1:
            raise ValueError("pages_per_batch must be >= 1")
        if self.claim_timeout_minutes < 1:
            raise ValueError("claim_timeout_minutes must be >= 1")

    @classmethod
    def from_env(cls) -> "StructuringConfig":
        return cls(
            pages_per_batch=int(os.getenv("PAGES_PER_BATCH", "10")),
            claim_timeout_minutes=int(os.getenv("STRUCTURING_CLAIM_TIMEOUT_MINUTES", "30")),
        )


@dataclass(frozen=True)
class TrackingConfig:
    """
    Auto-read policy for the reader.
    Only one of the two policies is active at a time.
    """

    mode: TrackingMode = TrackingMode.DWELL
    dwell_seconds: float = 5
    scroll_proximity: int = SCROLL_END_PROXIMITY
    retry_attempts: int = 3
    retry_delay_seconds: float = 0.5

    def __post_init__(self) -> None:
        if not MIN_DWELL_SECONDS <= self.dwell_seconds <= MAX_DWELL_SECONDS:
            raise ValueError(
                f"dwell_seconds must be within [{MIN_DWELL_SECONDS}, {MAX_DWELL_SECONDS}]"
            )
        if self.retry_attempts < 1:
            raise ValueError("retry_attempts must be >= 1")

    @classmethod
    def from_env(cls) -> "TrackingConfig":
        raw_threshold = float(os.getenv("AUTO_READ_THRESHOLD_SECONDS", "5"))
        # Out-of-range values from the environment are clamped, not rejected.
        threshold = min(max(raw_threshold, MIN_DWELL_SECONDS), MAX_DWELL_SECONDS)
        return cls(
            mode=TrackingMode(os.getenv("TRACKING_MODE", TrackingMode.DWELL.value).lower()),
            dwell_seconds=threshold,
        )


def configure_logging() -> None:
    logging.basicConfig(
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
