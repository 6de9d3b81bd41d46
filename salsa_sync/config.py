"""
Configuration loading and management for Salsa Sync.

Settings are merged from (lowest to highest precedence) built-in defaults, an
optional YAML file, an optional .env file, the process environment and the
command-line flags. The result is a single dictionary that is built once at
startup and handed to the clients that need it.
"""

import os
import argparse
import logging
from typing import Dict, Any, List, Optional
from urllib.parse import urlparse

import yaml
from dotenv import load_dotenv, dotenv_values

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


LOG_LEVELS = ('trace', 'debug', 'info', 'warn', 'warning', 'error', 'fatal', 'panic')
LOG_FORMATS = ('json', 'text')

# flag name -> (config key, default)
SETTINGS = {
    'metrics-bind-address': ('metrics_bind_address', '127.0.0.1:8080'),
    'log-level': ('log_level', 'debug'),
    'log-format': ('log_format', 'json'),
    'log-dir': ('log_dir', None),
    'storage-api': ('storage_api', 'http://localhost:9001/api/v1/'),
    'storage-api-key': ('storage_api_key', ''),
    'console-api': ('console_api', 'http://localhost:3000/query'),
    'console-api-key': ('console_api_key', ''),
    'http-timeout': ('http_timeout', 30),
    'verify-ssl': ('verify_ssl', True),
    'ca-file': ('ca_file', None),
}

FLAG_HELP = {
    'metrics-bind-address': 'Bind address for the metrics endpoint',
    'log-level': 'Which log level to output',
    'log-format': 'Log line format: json or text',
    'log-dir': 'Directory for rotating log files (file logging disabled when unset)',
    'storage-api': 'Salsa storage API endpoint',
    'storage-api-key': 'Salsa storage API key',
    'console-api': 'Console GraphQL query endpoint',
    'console-api-key': 'Console API key',
    'http-timeout': 'Timeout in seconds for each HTTP request',
    'ca-file': 'CA truststore (PEM or PKCS12) used to verify HTTPS endpoints',
}

TRUE_VALUES = ('1', 'true', 'yes', 'on')
FALSE_VALUES = ('0', 'false', 'no', 'off')


def env_name(flag: str) -> str:
    """Environment variable name for a flag: upper-cased, hyphens to underscores."""
    return flag.upper().replace('-', '_')


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the command-line parser; every setting defaults to None so unset flags can be told apart."""
    parser = argparse.ArgumentParser(
        prog='salsa-sync',
        description='Synchronize console users and teams into the Salsa storage API'
    )
    parser.add_argument('--config', '-c', help='Path to an optional YAML configuration file')
    parser.add_argument('--env-file', default='.env', help='Path to an optional .env file')
    for flag, help_text in FLAG_HELP.items():
        parser.add_argument(f'--{flag}', dest=SETTINGS[flag][0], default=None, help=help_text)
    parser.add_argument('--insecure', dest='verify_ssl', action='store_const', const=False,
                        default=None, help='Disable TLS certificate verification')
    return parser


class ConfigLoader:
    """Handles merging and validation of application configuration."""

    def __init__(self, args: Optional[argparse.Namespace] = None,
                 environ: Optional[Dict[str, str]] = None):
        """
        Initialize config loader.

        Args:
            args: Parsed command-line arguments. If None, no flags are applied.
            environ: Environment mapping. If None, os.environ is used; a
                given mapping is copied and never modified.
        """
        self.args = args
        self.environ = dict(environ) if environ is not None else os.environ
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Build the configuration.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If a config file cannot be read or validation fails
        """
        self.config = {key: default for key, default in SETTINGS.values()}

        self._load_env_file()

        config_path = self._arg('config') or self.environ.get('CONFIG_PATH')
        if config_path:
            self._apply_file(config_path)

        self._apply_env_overrides()
        self._apply_flags()
        self._coerce_types()
        self._validate()

        logger.debug("Configuration loaded successfully")
        return self.config

    def _arg(self, name: str):
        if self.args is None:
            return None
        return getattr(self.args, name, None)

    def _load_env_file(self):
        """Load the .env file into the environment without overriding existing variables."""
        env_file = self._arg('env_file') or '.env'
        if not os.path.isfile(env_file):
            logger.debug(f"No env file loaded from {env_file}")
            return
        if self.environ is os.environ:
            load_dotenv(env_file, override=False)
        else:
            for key, value in dotenv_values(env_file).items():
                if value is not None:
                    self.environ.setdefault(key, value)
        logger.debug(f"Loaded env file {env_file}")

    def _apply_file(self, config_path: str):
        """Apply settings from a YAML file. Keys may use either flag or config spelling."""
        try:
            with open(config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

        known = {key for key, _ in SETTINGS.values()}
        for raw_key, value in data.items():
            key = str(raw_key).replace('-', '_')
            if key not in known:
                logger.warning(f"Ignoring unknown configuration key '{raw_key}' in {config_path}")
                continue
            self.config[key] = value

        logger.info(f"Configuration file applied: {config_path}")

    def _apply_env_overrides(self):
        """Apply environment variables named after the flags."""
        for flag, (key, _) in SETTINGS.items():
            value = self.environ.get(env_name(flag))
            if value is not None:
                self.config[key] = value
                logger.debug(f"Applied environment override for {key}")

    def _apply_flags(self):
        for key, _ in SETTINGS.values():
            value = self._arg(key)
            if value is not None:
                self.config[key] = value

    def _coerce_types(self):
        """Convert string values coming from the environment or flags."""
        verify = self.config.get('verify_ssl')
        if isinstance(verify, str):
            lowered = verify.strip().lower()
            if lowered in TRUE_VALUES:
                self.config['verify_ssl'] = True
            elif lowered in FALSE_VALUES:
                self.config['verify_ssl'] = False
            else:
                raise ConfigurationError(f"Invalid boolean for verify_ssl: {verify}")

        timeout = self.config.get('http_timeout')
        try:
            self.config['http_timeout'] = float(timeout)
        except (TypeError, ValueError):
            raise ConfigurationError(f"Invalid http_timeout: {timeout}")

        if isinstance(self.config.get('log_level'), str):
            self.config['log_level'] = self.config['log_level'].strip().lower()

        if isinstance(self.config.get('log_format'), str):
            self.config['log_format'] = self.config['log_format'].strip().lower()

    def _validate(self):
        """Validate required configuration fields."""
        errors = []

        for key in ('storage_api_key', 'console_api_key'):
            if not self.config.get(key):
                errors.append(f"Missing required field: {key}")

        for key in ('storage_api', 'console_api'):
            url = self.config.get(key) or ''
            parsed = urlparse(url)
            if parsed.scheme not in ('http', 'https') or not parsed.netloc:
                errors.append(f"Invalid URL for {key}: '{url}'")

        if self.config['http_timeout'] <= 0:
            errors.append("http_timeout must be positive")

        if self.config.get('log_level') not in LOG_LEVELS:
            errors.append(f"Unknown log level: {self.config.get('log_level')}")

        if self.config.get('log_format') not in LOG_FORMATS:
            errors.append(f"Unknown log format: {self.config.get('log_format')}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))


def load_config(argv: Optional[List[str]] = None,
                environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        argv: Command-line arguments (without program name). None means no flags.
        environ: Environment mapping, defaults to os.environ

    Returns:
        Loaded configuration dictionary
    """
    args = build_arg_parser().parse_args(argv) if argv is not None else None
    return ConfigLoader(args, environ).load()
