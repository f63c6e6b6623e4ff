"""
Configuration loader for the oneM2M Device Sync Server
Loads and validates configuration from YAML files
"""

import yaml
import logging
from typing import Dict, Any
from pathlib import Path
from datetime import datetime
import pytz

logger = logging.getLogger(__name__)

def load_config(config_path: str = "config/config.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file with validation
    """
    try:
        config_file = Path(config_path)
        if not config_file.exists():
            logger.error(f"Configuration file not found: {config_path}")
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_file, 'r') as f:
            config = yaml.safe_load(f) or {}

        # Validate required sections
        _validate_config(config)

        # Apply defaults
        config = _apply_defaults(config)

        logger.info(f"Configuration loaded from {config_path}")
        return config

    except Exception as e:
        logger.error(f"Failed to load configuration: {e}")
        raise

def _validate_config(config: Dict) -> None:
    """Validate that required configuration sections exist"""
    required_sections = ['cse', 'discovery']

    for section in required_sections:
        if section not in config or config[section] is None:
            raise ValueError(f"Missing required configuration section: {section}")

    # Validate CSE section
    cse = config['cse']
    if not cse.get('host'):
        raise ValueError("cse.host is required")
    if 'port' in cse and not isinstance(cse['port'], int):
        raise ValueError("cse.port must be an integer")

    # Validate discovery section
    discovery = config['discovery']
    timeout = discovery.get('timeout_seconds', 5)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ValueError("discovery.timeout_seconds must be a positive number")
    interval = discovery.get('poll_interval_seconds', 15)
    if not isinstance(interval, (int, float)) or interval <= 0:
        raise ValueError("discovery.poll_interval_seconds must be a positive number")

def _apply_defaults(config: Dict) -> Dict:
    """Apply default values to configuration"""

    # CSE defaults (resource identifiers of the original client)
    cse_defaults = {
        'port': 8080,
        'base_path': '/cse-in',
        'namespace': 'm2m',
        'originator': 'CAdmin3',
        'release_version': '3',
        'entity_name': 'Notebook-AE',
        'app_id': 'NnotebookAE',
        'container_name': 'Container',
        'target_entity': 'Notebook-AE',
        'target_container': 'Container',
        'request_timeout': 5,
        'address_devices_directly': True
    }
    for key, default_value in cse_defaults.items():
        if key not in config['cse']:
            config['cse'][key] = default_value

    # Discovery defaults
    discovery_defaults = {
        'service_type': '_http._tcp.local.',
        'timeout_seconds': 5,
        'poll_interval_seconds': 15,
        'name_marker': 'lamp',
        'well_known_port': 8081,
        'read_state_on_discovery': True,
        'close_grace_seconds': 1.0,
        'resolve_timeout_seconds': 2.0,
        'poller_enabled': True
    }
    for key, default_value in discovery_defaults.items():
        if key not in config['discovery']:
            config['discovery'][key] = default_value

    # API defaults
    if 'api' not in config:
        config['api'] = {}
    api_defaults = {
        'enabled': True,
        'host': '127.0.0.1',
        'port': 8000
    }
    for key, default_value in api_defaults.items():
        if key not in config['api']:
            config['api'][key] = default_value

    # Logging defaults
    if 'logging' not in config:
        config['logging'] = {}
    logging_defaults = {
        'level': 'INFO',
        'file': 'logs/device_sync.log',
        'console_output': True,
        'timezone': 'UTC',
        'progress_history': 200
    }
    for key, default_value in logging_defaults.items():
        if key not in config['logging']:
            config['logging'][key] = default_value

    return config


class TimezoneFormatter(logging.Formatter):
    """Formatter that renders record timestamps in a configured timezone"""

    def __init__(self, fmt=None, tz_name: str = 'UTC'):
        super().__init__(fmt)
        try:
            self.tz = pytz.timezone(tz_name)
        except pytz.UnknownTimeZoneError:
            logger.warning(f"Unknown timezone '{tz_name}', falling back to UTC")
            self.tz = pytz.utc

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=self.tz)
        if datefmt:
            return dt.strftime(datefmt)
        else:
            # Default format: YYYY-MM-DD HH:MM:SS TZ
            return dt.strftime('%Y-%m-%d %H:%M:%S %Z')

def setup_logging(config: Dict) -> None:
    """Setup logging based on configuration with timezone-aware timestamps"""
    log_config = config.get('logging', {})
    level = log_config.get('level', 'INFO')
    tz_name = log_config.get('timezone', 'UTC')

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = TimezoneFormatter(log_format, tz_name)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper()))

    # Console handler
    if log_config.get('console_output', True):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    # File handler
    log_file = log_config.get('file')
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logger.info(f"Logging configured: level={level}, tz={tz_name}, console={log_config.get('console_output', True)}, file={log_file}")

def get_sample_config() -> Dict:
    """Return a sample configuration for reference"""
    return {
        "cse": {
            "host": "localhost",
            "port": 8080,
            "base_path": "/cse-in",
            "namespace": "m2m",
            "originator": "CAdmin3",
            "entity_name": "Notebook-AE",
            "app_id": "NnotebookAE",
            "container_name": "Container",
            "target_entity": "Notebook-AE",
            "target_container": "Container",
            "request_timeout": 5,
            "address_devices_directly": True
        },
        "discovery": {
            "service_type": "_http._tcp.local.",
            "timeout_seconds": 5,
            "poll_interval_seconds": 15,
            "name_marker": "lamp",
            "well_known_port": 8081,
            "read_state_on_discovery": True,
            "close_grace_seconds": 1.0
        },
        "api": {
            "enabled": True,
            "host": "127.0.0.1",
            "port": 8000
        },
        "logging": {
            "level": "INFO",
            "file": "logs/device_sync.log",
            "console_output": True,
            "timezone": "America/Sao_Paulo"
        }
    }
