"""Environment-driven settings for the shakepay engine.

``load_dotenv()`` runs in ``main.py`` before anything here is read, so values
from a local ``.env`` behave exactly like real environment variables.
"""

from __future__ import annotations

import logging
import math
import os
from dataclasses import dataclass
from pathlib import Path

from shakepay import constants

logger = logging.getLogger(__name__)


def _env_float(key: str, default: float) -> float:
    raw = os.environ.get(key, "")
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        value = math.nan
    if not math.isfinite(value):
        logger.warning("[Config] %s=%r is not a finite number, using %s", key, raw, default)
        return default
    return value


@dataclass(frozen=True)
class PaymentPolicy:
    """Bounds and cadences the session engine enforces.

    Fields
    ------
    min_amount, max_amount : inclusive bounds on a single payment.
    min_confidence : lowest ``overall_confidence`` accepted for execution.
    video_interval_s : minimum spacing between forwarded video frames.
    audio_buffer_s : seconds of PCM accumulated before one audio forward.
    """

    min_amount: float = constants.DEFAULT_MIN_AMOUNT
    max_amount: float = constants.DEFAULT_MAX_AMOUNT
    min_confidence: float = constants.DEFAULT_MIN_CONFIDENCE
    video_interval_s: float = constants.DEFAULT_VIDEO_INTERVAL_S
    audio_buffer_s: float = constants.DEFAULT_AUDIO_BUFFER_S

    def __post_init__(self) -> None:
        if not all(math.isfinite(v) for v in (self.min_amount, self.max_amount, self.min_confidence)):
            raise ValueError("payment policy bounds must be finite numbers")
        if self.min_amount > self.max_amount:
            raise ValueError(
                f"min_amount {self.min_amount} is greater than max_amount {self.max_amount}"
            )

    @property
    def audio_buffer_bytes(self) -> int:
        """Byte size of ``audio_buffer_s`` seconds of 16 kHz mono PCM-16."""
        return int(
            self.audio_buffer_s * constants.AUDIO_SAMPLE_RATE * constants.AUDIO_BYTES_PER_SAMPLE
        )

    def amount_violation(self, amount: float | None) -> str | None:
        """Return a human-readable reason if *amount* is outside policy, else None."""
        if amount is None:
            return "no amount was agreed"
        if not math.isfinite(amount):
            return f"amount {amount!r} is not a finite number"
        if amount < self.min_amount:
            return f"amount {amount:g} is below the minimum of {self.min_amount:g}"
        if amount > self.max_amount:
            return f"amount {amount:g} exceeds the maximum of {self.max_amount:g}"
        return None

    @classmethod
    def from_env(cls) -> "PaymentPolicy":
        return cls(
            min_amount=_env_float("SHAKEPAY_MIN_AMOUNT", constants.DEFAULT_MIN_AMOUNT),
            max_amount=_env_float("SHAKEPAY_MAX_AMOUNT", constants.DEFAULT_MAX_AMOUNT),
            min_confidence=_env_float("SHAKEPAY_MIN_CONFIDENCE", constants.DEFAULT_MIN_CONFIDENCE),
            video_interval_s=_env_float("SHAKEPAY_VIDEO_INTERVAL_S", constants.DEFAULT_VIDEO_INTERVAL_S),
            audio_buffer_s=_env_float("SHAKEPAY_AUDIO_BUFFER_S", constants.DEFAULT_AUDIO_BUFFER_S),
        )


@dataclass(frozen=True)
class Settings:
    """Process-wide settings: credentials, backends and storage paths."""

    policy: PaymentPolicy
    data_dir: Path
    gemini_api_key: str = ""
    gemini_model: str = constants.DEFAULT_GEMINI_MODEL
    payment_backend: str = "mcp"
    locus_api_key: str = ""
    locus_api_url: str = constants.DEFAULT_LOCUS_API_URL
    locus_mcp_url: str = ""
    log_level: str = "INFO"
    otel_exporter: str = constants.DEFAULT_OTEL_EXPORTER
    otel_endpoint: str = constants.DEFAULT_OTLP_ENDPOINT

    @property
    def people_path(self) -> Path:
        return self.data_dir / constants.PEOPLE_FILE

    @property
    def payments_path(self) -> Path:
        return self.data_dir / constants.PAYMENTS_FILE

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            policy=PaymentPolicy.from_env(),
            data_dir=Path(os.environ.get("SHAKEPAY_DATA_DIR", constants.DEFAULT_DATA_DIR)),
            gemini_api_key=os.environ.get("GEMINI_API_KEY", "") or os.environ.get("GOOGLE_API_KEY", ""),
            gemini_model=os.environ.get("GEMINI_MODEL", constants.DEFAULT_GEMINI_MODEL),
            payment_backend=os.environ.get("PAYMENT_BACKEND", "mcp").lower(),
            locus_api_key=os.environ.get("LOCUS_API_KEY", ""),
            locus_api_url=os.environ.get("LOCUS_API_URL", constants.DEFAULT_LOCUS_API_URL),
            locus_mcp_url=os.environ.get("LOCUS_MCP_URL", ""),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            otel_exporter=os.environ.get("OTEL_EXPORTER", constants.DEFAULT_OTEL_EXPORTER).lower(),
            otel_endpoint=os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", constants.DEFAULT_OTLP_ENDPOINT),
        )
