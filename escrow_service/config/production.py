#!/usr/bin/env python3
"""
🏭 Production Configuration for the Escrow Service
Environment-driven configuration, resolved once when the process starts
"""

import os
import json
from dataclasses import dataclass, field
from typing import Optional, Dict, Any

SUPPORTED_BACKENDS = ('memory', 'sqlite', 'postgresql')


def _env(name: str, default: str) -> str:
    return os.getenv(name, default)


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, 'true' if default else 'false').lower() == 'true'


def _from_env(reader, name, default):
    return field(default_factory=lambda: reader(name, default))


@dataclass
class DatabaseConfig:
    """Database backend selection and connection settings."""
    backend: str = _from_env(_env, 'ESCROW_DB_BACKEND', 'memory')
    allow_fallback: bool = _from_env(_env_bool, 'ESCROW_DB_ALLOW_FALLBACK', True)

    host: str = _from_env(_env, 'DB_HOST', 'localhost')
    port: int = _from_env(_env_int, 'DB_PORT', 5432)
    name: str = _from_env(_env, 'DB_NAME', 'escrow_service')
    user: str = _from_env(_env, 'DB_USER', 'escrow_user')
    password: str = _from_env(_env, 'DB_PASSWORD', '')
    ssl_mode: str = _from_env(_env, 'DB_SSL_MODE', 'require')
    max_connections: int = _from_env(_env_int, 'DB_MAX_CONNECTIONS', 20)
    connection_timeout: int = _from_env(_env_int, 'DB_CONNECTION_TIMEOUT', 30)

    sqlite_path: str = _from_env(_env, 'SQLITE_PATH', './data/escrow_service.db')

    @property
    def use_sqlite(self) -> bool:
        return self.backend == 'sqlite'

    @property
    def is_durable(self) -> bool:
        return self.backend in ('sqlite', 'postgresql')


@dataclass
class APIConfig:
    """API server configuration."""
    host: str = _from_env(_env, 'API_HOST', '0.0.0.0')
    port: int = _from_env(_env_int, 'API_PORT', 5001)
    debug: bool = _from_env(_env_bool, 'API_DEBUG', False)
    cors_origins: list = field(default_factory=lambda: json.loads(
        os.getenv('CORS_ORIGINS', '["http://localhost:3000", "http://localhost:8080"]')))
    rate_limit: str = _from_env(_env, 'API_RATE_LIMIT', '100 per minute')
    max_content_length: int = _from_env(_env_int, 'API_MAX_CONTENT_LENGTH', 1048576)  # 1MB
    secret_key: str = field(default_factory=lambda: os.getenv('API_SECRET_KEY', os.urandom(32).hex()))


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = _from_env(_env, 'LOG_LEVEL', 'INFO')
    format: str = _from_env(_env, 'LOG_FORMAT', '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    file_path: Optional[str] = _from_env(_env, 'LOG_FILE_PATH', '')
    max_file_size: int = _from_env(_env_int, 'LOG_MAX_FILE_SIZE', 10485760)  # 10MB
    backup_count: int = _from_env(_env_int, 'LOG_BACKUP_COUNT', 5)
    json_format: bool = _from_env(_env_bool, 'LOG_JSON_FORMAT', False)


@dataclass
class SecurityConfig:
    """Rate limiting configuration."""
    enable_rate_limiting: bool = _from_env(_env_bool, 'ENABLE_RATE_LIMITING', True)
    rate_limit_storage: str = _from_env(_env, 'RATE_LIMIT_STORAGE', 'memory')  # memory or redis
    redis_url: str = _from_env(_env, 'REDIS_URL', 'redis://localhost:6379')


@dataclass
class RoutingDefaults:
    """Startup values of the fee routing parameters."""
    min_mixing_rounds: int = _from_env(_env_int, 'ROUTING_MIN_MIXING_ROUNDS', 3)
    max_mixing_rounds: int = _from_env(_env_int, 'ROUTING_MAX_MIXING_ROUNDS', 7)
    min_delay_minutes: int = _from_env(_env_int, 'ROUTING_MIN_DELAY_MINUTES', 30)
    max_delay_minutes: int = _from_env(_env_int, 'ROUTING_MAX_DELAY_MINUTES', 180)
    max_wallet_balance: int = _from_env(_env_int, 'ROUTING_MAX_WALLET_BALANCE', 10_000_000)
    cycle_interval_hours: int = _from_env(_env_int, 'ROUTING_CYCLE_INTERVAL_HOURS', 6)
    enable_automated_mixing: bool = _from_env(_env_bool, 'ROUTING_ENABLE_AUTOMATED_MIXING', True)
    completion_delay_seconds: int = _from_env(_env_int, 'ROUTING_COMPLETION_DELAY_SECONDS', 60)


class ProductionConfig:
    """Main configuration class."""

    def __init__(self):
        self.database = DatabaseConfig()
        self.api = APIConfig()
        self.logging = LoggingConfig()
        self.security = SecurityConfig()
        self.routing = RoutingDefaults()

        self.environment = os.getenv('ENVIRONMENT', 'production')
        self.version = os.getenv('APP_VERSION', '1.0.0')

        self._validate_config()

    def _validate_config(self):
        """Validate critical configuration values."""
        errors = []

        if self.database.backend not in SUPPORTED_BACKENDS:
            errors.append(f"Unsupported database backend '{self.database.backend}'")

        if self.database.backend == 'postgresql' and not self.database.password:
            errors.append("Database password is required for postgresql")

        if self.security.rate_limit_storage not in ('memory', 'redis'):
            errors.append("Rate limit storage must be 'memory' or 'redis'")

        if len(self.api.secret_key) < 32:
            errors.append("API secret key must be at least 32 characters")

        if errors:
            raise ValueError(f"Configuration validation failed: {', '.join(errors)}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary (excluding sensitive data)."""
        config_dict = {}

        for section_name in ('database', 'api', 'logging', 'security', 'routing'):
            section = getattr(self, section_name)
            section_dict = {}
            for key, value in section.__dict__.items():
                if 'password' not in key.lower() and 'secret' not in key.lower() and 'key' not in key.lower():
                    section_dict[key] = value
                else:
                    section_dict[key] = '***REDACTED***'
            config_dict[section_name] = section_dict

        config_dict['environment'] = self.environment
        config_dict['version'] = self.version
        return config_dict


_config = None


def get_config() -> ProductionConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = ProductionConfig()
    return _config

