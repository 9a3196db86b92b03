"""
Configuration Management for the Auth Session client.

This module handles the ambient client configuration: the defaults used to
build the HTTP client and the storage backend when an embedder does not pass
its own, the storage key namespace and the logging setup. Values come from a
configuration file and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from typing import Optional, Dict, Any
from configparser import ConfigParser

from session_shared.exceptions import ConfigurationError, ErrorCode
from session_shared.logging_config import LogFormat, setup_logging
from session_shared.models import DEFAULT_STORAGE_KEYS, StorageKeys

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = ('secure', 'memory')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class ClientConfiguration:
    """
    Configuration manager for the Auth Session client.

    Supports configuration from:
    1. Runtime overrides (highest priority)
    2. Environment variables
    3. Configuration file
    4. Default values (lowest priority)
    """

    def __init__(self, config_file: Optional[str] = None):
        self._config_file = (
            config_file
            or os.environ.get('AUTH_SESSION_CONFIG_FILE')
            or self._get_default_config_path()
        )
        self._config_data: Dict[str, Any] = {}
        self._overrides: Dict[str, Any] = {}

        self._load_configuration()

    def _get_default_config_path(self) -> str:
        """Get default configuration file path (not created when missing)."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME')
        if xdg_config:
            config_dir = Path(xdg_config) / 'auth-session'
        else:
            config_dir = Path.home() / '.config' / 'auth-session'
        return str(config_dir / 'client.conf')

    def _load_configuration(self) -> None:
        """Load configuration from file and environment variables."""
        if os.path.exists(self._config_file):
            try:
                self._load_from_file()
                logger.info(f"Configuration loaded from: {self._config_file}")
            except Exception as e:
                logger.warning(f"Failed to load configuration file: {e}")
        else:
            logger.debug(f"Configuration file not found: {self._config_file}")

        self._load_from_environment()
        self._set_defaults()

    def _load_from_file(self) -> None:
        """Load configuration from INI file."""
        config = ConfigParser()
        config.read(self._config_file)

        for section_name in config.sections():
            section_data = {}
            for key, value in config[section_name].items():
                # Complex values are stored as JSON
                try:
                    section_data[key] = json.loads(value)
                except (json.JSONDecodeError, ValueError):
                    section_data[key] = value

            self._config_data[section_name] = section_data

    def _load_from_environment(self) -> None:
        """Load configuration from environment variables."""
        env_mappings = {
            'AUTH_SESSION_BASE_URL': ('http', 'base_url'),
            'AUTH_SESSION_TIMEOUT': ('http', 'timeout'),
            'AUTH_SESSION_STORAGE_BACKEND': ('storage', 'backend'),
            'AUTH_SESSION_STORAGE_DIR': ('storage', 'directory'),
            'AUTH_SESSION_SERVICE_NAME': ('storage', 'service_name'),
            'AUTH_SESSION_STORAGE_NAMESPACE': ('storage', 'namespace'),
            'AUTH_SESSION_LOG_LEVEL': ('logging', 'level'),
            'AUTH_SESSION_LOG_FORMAT': ('logging', 'format'),
            'AUTH_SESSION_LOG_FILE': ('logging', 'file'),
        }

        for env_var, (section, key) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                if section not in self._config_data:
                    self._config_data[section] = {}

                if value.lower() in ('true', 'false'):
                    self._config_data[section][key] = value.lower() == 'true'
                elif value.isdigit():
                    self._config_data[section][key] = int(value)
                else:
                    self._config_data[section][key] = value

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        defaults = {
            'http': {
                'base_url': '',
                'timeout': 30.0,
                'user_agent': 'AuthSessionClient/1.0',
            },
            'storage': {
                'backend': 'secure',
                'directory': None,
                'service_name': 'auth-session-client',
                'namespace': None,
            },
            'logging': {
                'level': 'INFO',
                'format': 'standard',
                'file': None,
            },
        }

        for section, section_defaults in defaults.items():
            if section not in self._config_data:
                self._config_data[section] = {}

            for key, default_value in section_defaults.items():
                if key not in self._config_data[section]:
                    self._config_data[section][key] = default_value

    def get_config(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key in format 'section.key'
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        if key in self._overrides:
            return self._overrides[key]

        if '.' not in key:
            return self._config_data.get(key, default)

        section, config_key = key.split('.', 1)
        return self._config_data.get(section, {}).get(config_key, default)

    def set_override(self, key: str, value: Any) -> None:
        """
        Set configuration override (highest priority).

        Args:
            key: Configuration key in format 'section.key'
            value: Override value
        """
        self._overrides[key] = value

    # Convenience methods for common configuration values

    def get_base_url(self) -> str:
        """Get the API base URL used by the default HTTP client."""
        return self.get_config('http.base_url', '') or ''

    def get_timeout(self) -> float:
        """Get HTTP request timeout in seconds."""
        value = self.get_config('http.timeout', 30.0)
        try:
            timeout = float(value)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Invalid HTTP timeout: {value!r}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='http.timeout'
            )
        if timeout <= 0:
            raise ConfigurationError(
                f"HTTP timeout must be positive, got {timeout}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='http.timeout'
            )
        return timeout

    def get_user_agent(self) -> str:
        return self.get_config('http.user_agent', 'AuthSessionClient/1.0')

    def get_storage_backend(self) -> str:
        """Get the default storage backend name ('secure' or 'memory')."""
        backend = str(self.get_config('storage.backend', 'secure')).lower()
        if backend not in STORAGE_BACKENDS:
            raise ConfigurationError(
                f"Unknown storage backend: {backend}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='storage.backend',
                context={'allowed': list(STORAGE_BACKENDS)}
            )
        return backend

    def get_storage_directory(self) -> Optional[str]:
        return self.get_config('storage.directory')

    def get_service_name(self) -> str:
        return self.get_config('storage.service_name', 'auth-session-client')

    def get_storage_keys(self) -> StorageKeys:
        """Get storage keys, namespaced when a namespace is configured."""
        namespace = self.get_config('storage.namespace')
        if namespace:
            return StorageKeys.with_namespace(namespace)
        return DEFAULT_STORAGE_KEYS

    def get_log_level(self) -> str:
        return str(self.get_config('logging.level', 'INFO')).upper()

    def get_log_format(self) -> str:
        return str(self.get_config('logging.format', 'standard')).lower()

    def get_log_file(self) -> Optional[str]:
        return self.get_config('logging.file')

    # Builders for default collaborators

    def create_http_client(self):
        """Create the default JSON HTTP client from configuration."""
        from session_client.api_client import AuthApiClient

        return AuthApiClient(
            base_url=self.get_base_url(),
            timeout=self.get_timeout(),
            headers={'User-Agent': self.get_user_agent()},
        )

    def create_storage(self):
        """Create the default storage backend from configuration."""
        from session_client.auth.token_storage import MemoryStorage, SecureStorage

        if self.get_storage_backend() == 'memory':
            return MemoryStorage()

        directory = self.get_storage_directory()
        return SecureStorage(
            service_name=self.get_service_name(),
            storage_dir=Path(directory) if directory else None,
        )

    def configure_logging(self) -> logging.Logger:
        """Apply the configured level, format and log file to the client's loggers."""
        level = self.get_log_level()
        if level not in LOG_LEVELS:
            raise ConfigurationError(
                f"Invalid log level: {level}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='logging.level',
                context={'allowed': list(LOG_LEVELS)}
            )
        try:
            log_format = LogFormat(self.get_log_format())
        except ValueError as e:
            raise ConfigurationError(
                f"Invalid log format: {e}",
                ErrorCode.CONFIG_INVALID_VALUE,
                config_key='logging.format'
            )

        return setup_logging(level=level, log_format=log_format, log_file=self.get_log_file())
