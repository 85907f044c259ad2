from dataclasses import dataclass, field
import os
from dotenv import load_dotenv
import logging
import sys
from typing import Dict, Optional
import structlog

from marketfeed.exceptions import ConfigurationError

# Load environment variables early
load_dotenv()

# Step 1: Configure stdlib logging to use stderr
logging.basicConfig(
    format='%(asctime)s [%(levelname)-8s] %(message)s',
    stream=sys.stderr,
    level=logging.INFO,
    force=True
)

# Step 2: Configure structlog
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.KeyValueRenderer(key_order=['timestamp', 'level', 'event']),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

# Provider display name -> credential environment variable
PROVIDER_KEY_ENV: Dict[str, str] = {
    "Alpha Vantage": "ALPHA_VANTAGE_API_KEY",
    "Financial Modeling Prep": "FMP_API_KEY",
    "Polygon.io": "POLYGON_API_KEY",
    "Federal Reserve FRED": "FRED_API_KEY",
}


def _get_env_var(var: str, required: bool = True, default: Optional[str] = None) -> str:
    """Get environment variable with validation. Whitespace-only counts as missing."""
    value = (os.environ.get(var, default) or "").strip()
    if required and not value:
        logger.error("missing_environment_variable", var=var)
        return ""
    return value


def validate_environment_variables(require_any: bool = False) -> Dict[str, bool]:
    """
    Check which provider credentials are present.

    Args:
        require_any: Raise if not a single keyed provider is configured

    Returns:
        Mapping of provider name to whether its key is set
    """
    status = {}
    for provider, var in PROVIDER_KEY_ENV.items():
        present = bool(_get_env_var(var, required=False))
        status[provider] = present
        if not present:
            logger.warning("provider_key_missing", provider=provider, var=var)

    if require_any and not any(status.values()):
        raise ConfigurationError(
            "No data provider API keys configured. Set at least one of: "
            + ", ".join(PROVIDER_KEY_ENV.values())
        )

    logger.info("environment_validated", configured=[p for p, ok in status.items() if ok])
    return status


@dataclass
class Config:
    """Configuration for the marketfeed data layer."""

    alpha_vantage_api_key: str = field(default_factory=lambda: _get_env_var("ALPHA_VANTAGE_API_KEY", required=False))
    fmp_api_key: str = field(default_factory=lambda: _get_env_var("FMP_API_KEY", required=False))
    polygon_api_key: str = field(default_factory=lambda: _get_env_var("POLYGON_API_KEY", required=False))
    fred_api_key: str = field(default_factory=lambda: _get_env_var("FRED_API_KEY", required=False))

    # Per-request transport timeout (seconds)
    request_timeout: int = int(os.environ.get("REQUEST_TIMEOUT", "15"))
    # Longest provider-suggested rate-limit wait an adapter will sit through
    max_retry_wait: float = float(os.environ.get("MAX_RETRY_WAIT", "60"))

    user_agent: str = os.environ.get("USER_AGENT", "marketfeed/0.1")
    log_level: str = os.environ.get("LOG_LEVEL", "INFO")

    def __post_init__(self):
        # Set logging level
        log_level = getattr(logging, self.log_level.upper(), logging.INFO)
        logging.getLogger().setLevel(log_level)
        for name in logging.root.manager.loggerDict:
            logging.getLogger(name).setLevel(log_level)

    def configured_providers(self) -> Dict[str, bool]:
        """Provider name -> whether a usable credential is present."""
        return {
            "Alpha Vantage": bool(self.alpha_vantage_api_key),
            "Financial Modeling Prep": bool(self.fmp_api_key),
            "Polygon.io": bool(self.polygon_api_key),
            "Federal Reserve FRED": bool(self.fred_api_key),
            "Yahoo Finance": True,
        }


config = Config()
