"""
Configuration for CryptoSage.

Values come from (highest first): the override dict passed to SageConfig,
environment variables (a .env file in the working directory is loaded),
then the defaults below.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

# Market-data endpoints
BINANCE_REST = "https://api.binance.com"
BINANCE_REST_FALLBACK = "https://api.binance.us"
BINANCE_WS = "wss://stream.binance.com:9443"
COINGECKO_REST = "https://api.coingecko.com"
FNG_REST = "https://api.alternative.me"

# HTTP status Binance returns for restricted regions
REGION_BLOCKED_STATUS = 451

DEFAULT_REQUEST_TIMEOUT = 10.0      # seconds
DEFAULT_LIVE_CAPACITY = 300         # points (five minutes at 1/sec)
DEFAULT_HEATMAP_REFRESH = 60.0      # seconds
DEFAULT_SENTIMENT_REFRESH = 120.0   # seconds
DEFAULT_HEATMAP_TOP = 10


class SageConfig:
    """
    Resolved settings for one run.

    Usage:
        config = SageConfig()
        config = SageConfig({'live_capacity': 3})  # tests
    """

    def __init__(self, overrides: Optional[dict[str, Any]] = None) -> None:
        self.overrides = overrides or {}

        self.binance_rest = self._get('binance_rest', 'CRYPTOSAGE_BINANCE_REST', BINANCE_REST)
        self.binance_rest_fallback = self._get(
            'binance_rest_fallback', 'CRYPTOSAGE_BINANCE_REST_FALLBACK', BINANCE_REST_FALLBACK
        )
        self.binance_ws = self._get('binance_ws', 'CRYPTOSAGE_BINANCE_WS', BINANCE_WS)
        self.coingecko_rest = self._get('coingecko_rest', 'CRYPTOSAGE_COINGECKO_REST', COINGECKO_REST)
        self.fng_rest = self._get('fng_rest', 'CRYPTOSAGE_FNG_REST', FNG_REST)

        self.request_timeout = self._get(
            'request_timeout', 'CRYPTOSAGE_REQUEST_TIMEOUT', DEFAULT_REQUEST_TIMEOUT, float
        )
        self.live_capacity = self._get(
            'live_capacity', 'CRYPTOSAGE_LIVE_CAPACITY', DEFAULT_LIVE_CAPACITY, int
        )
        self.heatmap_refresh = self._get(
            'heatmap_refresh', 'CRYPTOSAGE_HEATMAP_REFRESH', DEFAULT_HEATMAP_REFRESH, float
        )
        self.sentiment_refresh = self._get(
            'sentiment_refresh', 'CRYPTOSAGE_SENTIMENT_REFRESH', DEFAULT_SENTIMENT_REFRESH, float
        )
        self.data_dir = Path(
            self._get('data_dir', 'CRYPTOSAGE_DATA_DIR', str(Path.home() / '.cryptosage'))
        ).expanduser()
        self.log_level = str(self._get('log_level', 'CRYPTOSAGE_LOG_LEVEL', 'INFO')).upper()

        self._validate()

    def _get(
        self,
        key: str,
        env_var: str,
        default: Any,
        cast: Callable[[Any], Any] = str,
    ) -> Any:
        raw = self.overrides.get(key, os.getenv(env_var))
        if raw is None or raw == '':
            return default
        try:
            return cast(raw)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid value for {key}", {'env_var': env_var, 'value': raw}
            ) from e

    def _validate(self) -> None:
        if self.request_timeout <= 0:
            raise ConfigurationError("request_timeout must be positive",
                                     {'value': self.request_timeout})
        if self.live_capacity < 1:
            raise ConfigurationError("live_capacity must be at least 1",
                                     {'value': self.live_capacity})
        for name in ('heatmap_refresh', 'sentiment_refresh'):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive",
                                         {'value': getattr(self, name)})
        if logging.getLevelName(self.log_level) == f"Level {self.log_level}":
            raise ConfigurationError("Unknown log level", {'value': self.log_level})

    def setup_logging(self) -> None:
        """Configure root logging for the CLI."""
        logging.basicConfig(
            level=self.log_level,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
