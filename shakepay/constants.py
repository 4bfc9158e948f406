"""Centralized constants for the shakepay session engine.

Policy values here are defaults only; ``config.PaymentPolicy.from_env`` lets the
deployment override each of them.
"""

# Payment policy
DEFAULT_MIN_AMOUNT: float = 0.01
DEFAULT_MAX_AMOUNT: float = 50.0
DEFAULT_MIN_CONFIDENCE: float = 0.70

# Media forwarding
DEFAULT_VIDEO_INTERVAL_S: float = 1.0  # ~1 FPS to the model
DEFAULT_AUDIO_BUFFER_S: float = 2.0
AUDIO_SAMPLE_RATE: int = 16_000
AUDIO_BYTES_PER_SAMPLE: int = 2  # PCM-16 mono
AUDIO_MIME_TYPE: str = "audio/pcm;rate=16000"
VIDEO_MIME_TYPE: str = "image/jpeg"

# Model peer
DEFAULT_GEMINI_MODEL: str = "gemini-live-2.5-flash-preview"
MAX_REFERENCE_IMAGES: int = 3  # per enrolled candidate, sent once at start

# WebSocket timeouts (seconds)
WEBSOCKET_RECEIVE_TIMEOUT: float = 30.0

# Payment
PAYMENT_TIMEOUT: float = 30.0
DEFAULT_LOCUS_API_URL: str = "https://api.paywithlocus.com"
LOCUS_SEND_TOOL: str = "send_to_address"

# Storage
DEFAULT_DATA_DIR: str = "data"
PEOPLE_FILE: str = "people.json"
PAYMENTS_FILE: str = "payments.jsonl"

# Telemetry
SERVICE_NAME: str = "shakepay"
DEFAULT_OTEL_EXPORTER: str = "console"
DEFAULT_OTLP_ENDPOINT: str = "http://localhost:4317"
