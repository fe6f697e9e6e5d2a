import pathlib
import os
import logging
from pydantic_settings import BaseSettings, SettingsConfigDict
from whisperwalls.version import __version__ as app_version
from pydantic import Field
from pydantic import model_validator

# --------------------------------------------------------------
# Root logging configuration
# --------------------------------------------------------------
# Honour a LOG_LEVEL environment variable (default INFO) so that running e.g.
#   $ export LOG_LEVEL=DEBUG
# surfaces debug-level log lines from all project modules without requiring a
# custom uvicorn logging config.  Set up before the rest of the app is
# imported so it governs all subsequent logger instances.

_root_log_level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

# Only configure the root logger if it hasn't been configured yet (to avoid
# clobbering test-specific logging setups).
if not logging.getLogger().hasHandlers():  # pragma: no cover
    logging.basicConfig(
        level=_root_log_level, format="%(levelname)s:%(name)s:%(message)s"
    )
else:
    logging.getLogger().setLevel(_root_log_level)

# Absolute path to the project-root .env file so loading does not depend on
# the current working directory (``uvicorn --reload`` changes it).
try:
    _project_root = pathlib.Path(__file__).parent.parent.parent
    _ENV_FILE = _project_root / ".env"
    logging.debug(f"Looking for .env file at {_ENV_FILE}")
    if not _ENV_FILE.is_file():
        _ENV_FILE = ".env"
        logging.debug(f"No .env file found at project root, using {_ENV_FILE}")
except NameError:
    _ENV_FILE = ".env"


class Settings(BaseSettings):
    # Pydantic-settings model. Populates settings from .env file and environment
    # variables.  See: https://docs.pydantic.dev/latest/concepts/pydantic_settings/

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    PROJECT_NAME: str = "Whisper Walls Backend"
    API_V1_STR: str = "/api/v1"

    # Application build version (surfaced in OpenAPI docs)
    APP_VERSION: str = app_version

    ENVIRONMENT: str = Field(default="dev")

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    STORE_BACKEND: str = Field(
        default="memory",
        description="'memory' keeps everything in-process, 'astra' uses the Astra Data API.",
    )

    ASTRA_DB_API_ENDPOINT: str = "http://localhost:8080/api"  # Dummy default for tests
    ASTRA_DB_APPLICATION_TOKEN: str = "test-token"  # Dummy default for tests
    ASTRA_DB_KEYSPACE: str = "test_keyspace"  # Dummy default for tests

    MESSAGES_COLLECTION: str = "whisper_messages"
    MODERATION_QUEUE_COLLECTION: str = "moderation_queue"
    REPORTS_COLLECTION: str = "message_reports"
    MOOD_HISTORY_COLLECTION: str = "mood_history"

    # JWT Settings
    SECRET_KEY: str = "unit-test-secret"  # Dummy default for tests
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS – provide comma-separated string in env ("*" for all)
    CORS_ALLOW_ORIGINS: str = "*"

    @property
    def parsed_cors_origins(self) -> list[str]:  # noqa: D401
        raw = self.CORS_ALLOW_ORIGINS
        if raw.strip() == "*":
            return ["*"]
        origins = []
        for o in raw.split(","):
            o_strip = o.strip()
            if not o_strip:
                continue
            # "http://localhost:8080/" and "http://localhost:8080" must match.
            if o_strip.endswith("/"):
                o_strip = o_strip.rstrip("/")
            origins.append(o_strip)
        return origins

    # ------------------------------------------------------------------
    # Message lifecycle
    # ------------------------------------------------------------------

    MESSAGE_MAX_LENGTH: int = Field(default=1000, ge=1)

    DEFAULT_EXPIRATION_HOURS: int = Field(default=24, ge=1)
    MIN_EXPIRATION_HOURS: int = Field(default=1, ge=1)
    MAX_EXPIRATION_HOURS: int = Field(default=168, ge=1)

    CREATE_RATE_LIMIT: int = Field(default=10, ge=1)
    CREATE_RATE_WINDOW_MS: int = Field(default=300_000, ge=1)
    REPORT_RATE_LIMIT: int = Field(default=5, ge=1)
    REPORT_RATE_WINDOW_MS: int = Field(default=300_000, ge=1)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    DEFAULT_RADIUS_METERS: float = Field(default=1000.0, gt=0)
    MAX_RADIUS_METERS: float = Field(default=50_000.0, gt=0)
    DEFAULT_DISCOVERY_LIMIT: int = Field(default=50, ge=1)
    MAX_DISCOVERY_LIMIT: int = Field(default=100, ge=1)
    # How many nearby rows to pull from the store before post-filtering
    DISCOVERY_CANDIDATE_LIMIT: int = Field(default=500, ge=1)
    INSIGHTS_SAMPLE_LIMIT: int = Field(default=1000, ge=1)

    # ------------------------------------------------------------------
    # Classifiers (mood + content moderation)
    # ------------------------------------------------------------------

    MOOD_CLASSIFIER_BACKEND: str = Field(default="mock")
    CONTENT_CLASSIFIER_BACKEND: str = Field(default="keyword")

    OPENAI_API_KEY: str | None = Field(
        default=None,
        description="API key for the OpenAI moderation / chat endpoints.",
    )
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_MOOD_MODEL: str = "gpt-4o-mini"

    CLASSIFIER_TIMEOUT_SECONDS: float = Field(
        default=8.0,
        description="Upper bound for any outbound classifier call before the fallback path runs.",
        ge=0.5,
        le=30.0,
    )

    MODERATION_KEYWORDS: str = "spam,scam,hate,kill,die,suicide"

    @property
    def parsed_moderation_keywords(self) -> list[str]:
        return [k.strip().lower() for k in self.MODERATION_KEYWORDS.split(",") if k.strip()]

    # ------------------------------------------------------------------
    # Background sweeper
    # ------------------------------------------------------------------

    SWEEPER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: float = Field(default=3600.0, gt=0)
    MOOD_HISTORY_RETENTION_DAYS: int = Field(default=365, ge=1)

    # ------------------------------------------------------------------
    # Pydantic hook: coerce boolean env vars that may carry inline
    # descriptors (e.g. "false   # disable sweeper") coming from env files.
    # ------------------------------------------------------------------

    @model_validator(mode="before")
    @classmethod
    def _sanitize_bool_tokens(cls, data):  # type: ignore[return-value]
        for key in (
            "SWEEPER_ENABLED",
            "OBSERVABILITY_ENABLED",
            "OTEL_TRACES_ENABLED",
            "OTEL_METRICS_ENABLED",
            "LOKI_ENABLED",
        ):
            if key in data and isinstance(data[key], str):
                raw = data[key]
                token = raw.split("#", 1)[0].strip().split()[0]
                data[key] = token
        return data

    @model_validator(mode="after")
    def _check_expiration_bounds(self):
        if self.MIN_EXPIRATION_HOURS > self.MAX_EXPIRATION_HOURS:
            raise ValueError("MIN_EXPIRATION_HOURS must not exceed MAX_EXPIRATION_HOURS")
        return self

    # ------------------------------------------------------------------
    # Observability / Telemetry
    # ------------------------------------------------------------------

    # Master on/off switch – when false no observability instrumentation is
    # initialised.
    OBSERVABILITY_ENABLED: bool = Field(
        default=True,
        description="Globally enable/disable all extra observability (metrics/traces/log shipping).",
    )

    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = Field(
        default=None,
        description="Base OTLP endpoint, e.g. http://otelcol:4317.  If unset OTLP export is disabled.",
    )
    OTEL_TRACES_ENABLED: bool = True
    OTEL_METRICS_ENABLED: bool = False
    # "grpc" (default) or "http"
    OTEL_EXPORTER_OTLP_PROTOCOL: str = Field(default="grpc")
    # Comma-separated key=value list, e.g. "token=abcd123,env=dev".
    OTEL_EXPORTER_OTLP_HEADERS: str | None = Field(default=None)
    OTEL_TRACES_SAMPLER_RATIO: float = Field(default=1.0, ge=0.0, le=1.0)

    # --- Centralised logging (Loki) --------------------------------------

    LOKI_ENABLED: bool = Field(
        default=False, description="Enable structured log shipping to Loki."
    )
    LOKI_ENDPOINT: str | None = Field(
        default=None,
        description="Loki push API endpoint, e.g. http://loki:3100/loki/api/v1/push.",
    )
    LOKI_EXTRA_LABELS: str | None = Field(default=None)


settings = Settings()
