"""
Configuration settings and logging setup for the meet scheduler.
"""

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

from dotenv import load_dotenv

DEFAULT_REDIRECT_PORT = 5173
DEFAULT_APPLE_CALENDAR = 'Meetings'
TOKEN_FILE_NAME = 'tokens.json'


def default_config_dir() -> Path:
    base = os.environ.get('XDG_CONFIG_HOME') or os.path.join(os.path.expanduser('~'), '.config')
    return Path(base) / 'meet-scheduler'


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == '':
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class Settings:
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_port: int = DEFAULT_REDIRECT_PORT
    credentials_file: Optional[Path] = None
    config_dir: Path = field(default_factory=default_config_dir)
    calendar_ids: List[str] = field(default_factory=lambda: ['primary'])
    apple_calendar_name: str = DEFAULT_APPLE_CALENDAR
    apple_calendar_sync: bool = sys.platform == 'darwin'
    log_level: str = 'INFO'

    @property
    def token_path(self) -> Path:
        return self.config_dir / TOKEN_FILE_NAME


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Build settings from the environment, after loading a .env file."""
    load_dotenv(env_file)

    redirect_port = DEFAULT_REDIRECT_PORT
    redirect_uri = os.environ.get('GOOGLE_REDIRECT_URI')
    if redirect_uri:
        redirect_port = urlparse(redirect_uri).port or DEFAULT_REDIRECT_PORT

    home = os.environ.get('MEET_SCHEDULER_HOME')
    config_dir = Path(os.path.expanduser(home)) if home else default_config_dir()

    credentials_file = os.environ.get('GOOGLE_CREDENTIALS_FILE')
    calendar_ids = [c.strip() for c in os.environ.get('CALENDAR_IDS', 'primary').split(',') if c.strip()]

    return Settings(
        client_id=os.environ.get('GOOGLE_CLIENT_ID'),
        client_secret=os.environ.get('GOOGLE_CLIENT_SECRET'),
        redirect_port=redirect_port,
        credentials_file=Path(os.path.expanduser(credentials_file)) if credentials_file else None,
        config_dir=config_dir,
        calendar_ids=calendar_ids or ['primary'],
        apple_calendar_name=os.environ.get('APPLE_CALENDAR_NAME') or DEFAULT_APPLE_CALENDAR,
        apple_calendar_sync=_env_flag('APPLE_CALENDAR_SYNC', sys.platform == 'darwin'),
        log_level=os.environ.get('LOG_LEVEL', 'INFO'),
    )


def configure_logging(level: str = 'INFO') -> None:
    """Log to stderr only; stdout carries the MCP stdio protocol."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    # Suppress some noisy loggers
    logging.getLogger('googleapiclient').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
