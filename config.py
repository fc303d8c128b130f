"""
Configuration management for the JustCall Transcript Exporter
"""
import time
from dataclasses import dataclass
from datetime import datetime, date
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import field_validator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from errors import InvalidCredentials

SECONDS_PER_DAY = 86400
DATE_FORMAT = '%Y-%m-%d'


@dataclass(frozen=True)
class Credentials:
    """JustCall key/secret pair. Never persisted by the pipeline."""
    key: str
    secret: str

    @classmethod
    def create(cls, key: Optional[str], secret: Optional[str]) -> "Credentials":
        clean_key = (key or '').strip()
        clean_secret = (secret or '').strip()
        if not clean_key or not clean_secret:
            raise InvalidCredentials("Please enter both API Key and Secret.")
        return cls(clean_key, clean_secret)

    def header_value(self) -> str:
        return f"{self.key}:{self.secret}"

    def __repr__(self) -> str:
        return f"Credentials(key={self.key[:4]}..., secret=***)"


@dataclass(frozen=True)
class DateRange:
    """Calendar date range, inclusive on both ends at day granularity."""
    start: date
    end: date

    @classmethod
    def parse(cls, start: str, end: str) -> "DateRange":
        try:
            start_obj = datetime.strptime(start.strip(), DATE_FORMAT).date()
            end_obj = datetime.strptime(end.strip(), DATE_FORMAT).date()
        except (AttributeError, ValueError):
            raise ValueError(f'Dates must be in YYYY-MM-DD format (got {start!r}, {end!r})')
        if end_obj < start_obj:
            raise ValueError(f'End date {end} is before start date {start}')
        return cls(start_obj, end_obj)

    def to_epoch_interval(self) -> Tuple[int, int]:
        """
        Epoch-second bounds ``(start_of_day(start), start_of_day(end) + 86399)``.

        Dates are interpreted in the local timezone of the machine.
        """
        return _start_of_day(self.start), _start_of_day(self.end) + SECONDS_PER_DAY - 1

    def __str__(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"


def _start_of_day(day: date) -> int:
    return int(time.mktime(day.timetuple()))


class JustCallConfig(BaseSettings):
    """Configuration settings for JustCall API access and transcript export."""

    model_config = SettingsConfigDict(env_file='.env', case_sensitive=False, extra='ignore')

    # JustCall API Credentials (checked when a command needs the network)
    justcall_api_key: str = Field(default='')
    justcall_api_secret: str = Field(default='')
    justcall_base_url: str = Field(default='https://api.justcall.io/v1/calls')

    # Download Configuration
    download_start_date: str = Field(default='2024-01-01')
    download_end_date: str = Field(default_factory=lambda: date.today().isoformat())
    output_directory: str = Field(default='./exports')

    # API Configuration
    page_size: int = Field(default=50, ge=1)
    page_delay: float = Field(default=2.0, ge=0)  # seconds between pages
    api_timeout: int = Field(default=60)  # seconds
    max_retries: int = Field(default=3, ge=1)
    include_transcription: bool = Field(default=True)
    max_pages: Optional[int] = Field(default=None, ge=1)  # safety cap, None = no limit

    # Connection strategies
    strategy_order: str = Field(default='direct,local-relay,corsproxy-io,allorigins')
    local_relay_url: str = Field(default='http://localhost:5173/justcall-api/v1/calls')
    reuse_probe: bool = Field(default=True)

    @field_validator('download_start_date', 'download_end_date')
    @classmethod
    def validate_date_format(cls, v):
        """Validate date format (YYYY-MM-DD)."""
        try:
            datetime.strptime(v, DATE_FORMAT)
            return v
        except ValueError:
            raise ValueError('Date must be in YYYY-MM-DD format')

    @field_validator('justcall_base_url', 'local_relay_url')
    @classmethod
    def strip_trailing_slash(cls, v):
        return v.strip().rstrip('/')

    @property
    def strategy_names(self) -> List[str]:
        return [name.strip().lower() for name in self.strategy_order.split(',') if name.strip()]

    @property
    def date_range(self) -> DateRange:
        return DateRange.parse(self.download_start_date, self.download_end_date)

    @property
    def output_path(self) -> Path:
        return Path(self.output_directory)

    def credentials(self) -> Credentials:
        return Credentials.create(self.justcall_api_key, self.justcall_api_secret)


def load_config(**overrides) -> JustCallConfig:
    """Load and validate configuration."""
    try:
        return JustCallConfig(**overrides)
    except Exception as e:
        print(f"Configuration error: {e}")
        print("\nPlease ensure you have set the required environment variables:")
        print("- JUSTCALL_API_KEY")
        print("- JUSTCALL_API_SECRET")
        print("\nYou can set these in a .env file or as environment variables.")
        raise


REQUIRED_ENV_VARS = {
    'JUSTCALL_API_KEY': 'Your JustCall API Key',
    'JUSTCALL_API_SECRET': 'Your JustCall API Secret',
}

OPTIONAL_ENV_VARS = {
    'DOWNLOAD_START_DATE': 'Start date (YYYY-MM-DD, default: 2024-01-01)',
    'DOWNLOAD_END_DATE': 'End date (YYYY-MM-DD, default: today)',
    'OUTPUT_DIRECTORY': 'Directory for CSV exports (default: ./exports)',
    'PAGE_DELAY': 'Seconds to wait between pages (default: 2.0)',
    'MAX_PAGES': 'Stop after this many pages (default: no limit)',
    'REUSE_PROBE': 'Reuse the connection method found by the test command (default: true)',
    'STRATEGY_ORDER': 'Connection strategies to try, in order (default: direct,local-relay,corsproxy-io,allorigins)',
    'LOCAL_RELAY_URL': 'Local relay endpoint (default: http://localhost:5173/justcall-api/v1/calls)',
}
