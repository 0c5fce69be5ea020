"""Service and processing configuration.

ServiceConfig is fixed for the life of the process and validated once at
startup. ProcessingConfig holds the tunables the pipeline reads on every
pass; it lives in a SettingsStore so it can be changed at runtime without
a restart.
"""
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised for configuration that must stop the service from starting."""


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass(frozen=True)
class ProcessingConfig:
    """Tunables read by the scheduler, analyzer and action engine."""

    # Quiet period after the last caller message before a pass runs
    debounce_seconds: float = 5.0

    # Unforced passes are skipped for a session processed this recently
    reprocess_suppression_seconds: float = 300.0

    auto_case_creation: bool = False
    auto_send_resources: bool = False

    # Risk scoring thresholds
    crisis_sentiment_threshold: float = -0.7
    negative_sentiment_threshold: float = -0.4
    crisis_indicator_threshold: int = 3

    # Ended sessions stay readable for this long before eviction
    session_eviction_grace_seconds: float = 60.0

    def __post_init__(self):
        if self.debounce_seconds < 0:
            raise ValueError(f"debounce_seconds must be >= 0, got {self.debounce_seconds}")
        if self.reprocess_suppression_seconds < 0:
            raise ValueError(
                f"reprocess_suppression_seconds must be >= 0, got {self.reprocess_suppression_seconds}"
            )
        if self.session_eviction_grace_seconds < 0:
            raise ValueError(
                f"session_eviction_grace_seconds must be >= 0, got {self.session_eviction_grace_seconds}"
            )
        if not -1.0 <= self.crisis_sentiment_threshold <= self.negative_sentiment_threshold <= 1.0:
            raise ValueError(
                "Sentiment thresholds must satisfy -1 <= crisis <= negative <= 1"
            )
        if self.crisis_indicator_threshold < 1:
            raise ValueError(
                f"crisis_indicator_threshold must be >= 1, got {self.crisis_indicator_threshold}"
            )

    @classmethod
    def from_env(cls) -> "ProcessingConfig":
        """Create config from environment variables.

        Environment variables:
            ANALYSIS_DEBOUNCE_SECONDS: Debounce window (default 5)
            REPROCESS_SUPPRESSION_SECONDS: Suppression window (default 300)
            AUTO_CASE_CREATION_ENABLED: Create case records automatically (default false)
            AUTO_SEND_RESOURCES_ENABLED: Send resources on indicators (default false)
            CRISIS_SENTIMENT_THRESHOLD: default -0.7
            NEGATIVE_SENTIMENT_THRESHOLD: default -0.4
            CRISIS_INDICATOR_THRESHOLD: default 3
            SESSION_EVICTION_GRACE_SECONDS: default 60
        """
        return cls(
            debounce_seconds=float(os.getenv("ANALYSIS_DEBOUNCE_SECONDS", "5")),
            reprocess_suppression_seconds=float(os.getenv("REPROCESS_SUPPRESSION_SECONDS", "300")),
            auto_case_creation=_env_bool("AUTO_CASE_CREATION_ENABLED", False),
            auto_send_resources=_env_bool("AUTO_SEND_RESOURCES_ENABLED", False),
            crisis_sentiment_threshold=float(os.getenv("CRISIS_SENTIMENT_THRESHOLD", "-0.7")),
            negative_sentiment_threshold=float(os.getenv("NEGATIVE_SENTIMENT_THRESHOLD", "-0.4")),
            crisis_indicator_threshold=int(os.getenv("CRISIS_INDICATOR_THRESHOLD", "3")),
            session_eviction_grace_seconds=float(os.getenv("SESSION_EVICTION_GRACE_SECONDS", "60")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SettingsStore:
    """Holder for the current ProcessingConfig.

    Readers take ``settings.current`` each time they need a value; updates
    swap in a new frozen instance, so a reader never sees a half-applied
    change.
    """

    def __init__(self, initial: Optional[ProcessingConfig] = None):
        self._current = initial or ProcessingConfig()
        self._lock = threading.Lock()

    @property
    def current(self) -> ProcessingConfig:
        return self._current

    def update(self, **changes: Any) -> ProcessingConfig:
        """Apply changes atomically.

        Raises:
            KeyError: For an unknown setting name
            ValueError: If the resulting config is invalid
        """
        known = {f.name for f in fields(ProcessingConfig)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise KeyError(f"Unknown settings: {', '.join(unknown)}")

        with self._lock:
            updated = replace(self._current, **changes)
            self._current = updated

        logger.info("PROCESSING_CONFIG_UPDATED", extra={"changed": sorted(changes)})
        return updated


@dataclass(frozen=True)
class ServiceConfig:
    """Process-level configuration: endpoints, credentials, enabled channels."""
    environment: str = "development"
    host: str = "0.0.0.0"
    port: int = 3000

    case_api_url: Optional[str] = "http://localhost:5000/api"
    case_api_key: Optional[str] = None
    case_api_timeout_seconds: float = 15.0

    sentiment_api_url: Optional[str] = None
    sentiment_api_key: Optional[str] = None
    sentiment_api_timeout_seconds: float = 10.0

    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_webhook_url: Optional[str] = None
    twilio_validate_signatures: bool = True

    genesys_client_id: Optional[str] = None
    genesys_client_secret: Optional[str] = None
    genesys_environment: str = "mypurecloud.com"
    genesys_webhook_url: Optional[str] = None

    websocket_enabled: bool = True

    event_stream_enabled: bool = False
    event_stream_name: str = "crisiswatch-conversation-events"
    aws_region: str = "us-east-1"

    pii_salt: Optional[str] = None

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def twilio_enabled(self) -> bool:
        return bool(self.twilio_account_sid and self.twilio_auth_token)

    @property
    def genesys_enabled(self) -> bool:
        return bool(self.genesys_client_id and self.genesys_client_secret)

    def enabled_platforms(self) -> List[str]:
        platforms = []
        if self.twilio_enabled:
            platforms.append("twilio")
        if self.genesys_enabled:
            platforms.append("genesys")
        if self.websocket_enabled:
            platforms.append("websocket")
        return platforms

    def validate(self) -> None:
        """Fail fast on configuration the service cannot run with.

        Raises:
            ConfigurationError: Listing every problem found
        """
        errors = []
        if not self.enabled_platforms():
            errors.append("At least one channel adapter must be enabled")
        if not 0 < self.port < 65536:
            errors.append(f"Invalid port: {self.port}")
        if self.case_api_timeout_seconds <= 0:
            errors.append("CASE_API_TIMEOUT_SECONDS must be positive")
        if self.sentiment_api_timeout_seconds <= 0:
            errors.append("SENTIMENT_API_TIMEOUT_SECONDS must be positive")
        if self.is_production:
            if not self.case_api_url:
                errors.append("CASE_API_URL is required in production")
            if not self.pii_salt:
                errors.append("PII_SALT is required in production")

        if errors:
            logger.critical("CONFIGURATION_INVALID", extra={"errors": errors})
            raise ConfigurationError("; ".join(errors))

    @classmethod
    def from_env(cls) -> "ServiceConfig":
        """Create config from environment variables.

        Environment variables:
            ENVIRONMENT, HOST, PORT
            CASE_API_URL, CASE_API_KEY, CASE_API_TIMEOUT_SECONDS
            SENTIMENT_API_URL, SENTIMENT_API_KEY, SENTIMENT_API_TIMEOUT_SECONDS
            TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_WEBHOOK_URL,
            TWILIO_VALIDATE_SIGNATURES
            GENESYS_CLIENT_ID, GENESYS_CLIENT_SECRET, GENESYS_ENVIRONMENT,
            GENESYS_WEBHOOK_URL
            WEBSOCKET_ENABLED
            EVENT_STREAM_ENABLED, EVENT_STREAM_NAME, AWS_REGION
            PII_SALT
        """
        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "3000")),
            case_api_url=_env_optional("CASE_API_URL") or "http://localhost:5000/api",
            case_api_key=_env_optional("CASE_API_KEY"),
            case_api_timeout_seconds=float(os.getenv("CASE_API_TIMEOUT_SECONDS", "15")),
            sentiment_api_url=_env_optional("SENTIMENT_API_URL"),
            sentiment_api_key=_env_optional("SENTIMENT_API_KEY"),
            sentiment_api_timeout_seconds=float(os.getenv("SENTIMENT_API_TIMEOUT_SECONDS", "10")),
            twilio_account_sid=_env_optional("TWILIO_ACCOUNT_SID"),
            twilio_auth_token=_env_optional("TWILIO_AUTH_TOKEN"),
            twilio_webhook_url=_env_optional("TWILIO_WEBHOOK_URL"),
            twilio_validate_signatures=_env_bool("TWILIO_VALIDATE_SIGNATURES", True),
            genesys_client_id=_env_optional("GENESYS_CLIENT_ID"),
            genesys_client_secret=_env_optional("GENESYS_CLIENT_SECRET"),
            genesys_environment=os.getenv("GENESYS_ENVIRONMENT", "mypurecloud.com"),
            genesys_webhook_url=_env_optional("GENESYS_WEBHOOK_URL"),
            websocket_enabled=_env_bool("WEBSOCKET_ENABLED", True),
            event_stream_enabled=_env_bool("EVENT_STREAM_ENABLED", False),
            event_stream_name=os.getenv("EVENT_STREAM_NAME", "crisiswatch-conversation-events"),
            aws_region=os.getenv("AWS_REGION", "us-east-1"),
            pii_salt=_env_optional("PII_SALT"),
        )

    def with_secrets(self, secret_arn: str) -> "ServiceConfig":
        """Overlay credentials stored in AWS Secrets Manager.

        The secret is a JSON object whose keys are ServiceConfig field
        names (e.g. ``twilio_auth_token``, ``case_api_key``). Unknown keys
        are ignored.

        Raises:
            ConfigurationError: If the secret cannot be loaded
        """
        try:
            import boto3

            client = boto3.client("secretsmanager", region_name=self.aws_region)
            response = client.get_secret_value(SecretId=secret_arn)
            secret = json.loads(response["SecretString"])
        except Exception as e:
            logger.critical(
                "SECRETS_LOAD_FAILED",
                extra={"secret_arn": secret_arn, "error": str(e)}
            )
            raise ConfigurationError(f"Could not load secrets from {secret_arn}") from e

        known = {f.name for f in fields(self)}
        overrides = {k: v for k, v in secret.items() if k in known}
        logger.info("SECRETS_LOADED", extra={"keys": sorted(overrides)})
        return replace(self, **overrides)
