"""
Configuration Management Module
Loads and validates configuration from config.yaml

Environment variables override the file:
    DATABASE_URL   full SQLAlchemy URL (database.url)
    JWT_SECRET     token signing secret (auth.jwt_secret)
    CORS_ORIGINS   comma-separated allowed origins (api.cors_origins)
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

DEFAULT_JWT_SECRET = "change-me-in-production"


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "authentiqa"
    password: str = "authentiqa"
    name: str = "authentiqa"
    url: Optional[str] = None
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    echo: bool = False
    slow_query_ms: float = 1000.0


@dataclass
class PaginationConfig:
    """Page size ceilings for listing endpoints"""
    max_event_page_size: int = 100
    max_case_page_size: int = 200


@dataclass
class RateLimitConfig:
    """Admission control for unauthenticated scan ingestion"""
    enabled: bool = True
    max_requests: int = 60
    window_seconds: int = 60


@dataclass
class AuthConfig:
    """Token issuance settings"""
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_ttl_hours: int = 168
    bcrypt_rounds: int = 10


@dataclass
class AnalyticsConfig:
    """Aggregation settings"""
    top_n: int = 10


@dataclass
class ApiConfig:
    """HTTP surface settings"""
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    security_log_dir: str = "logs"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/authentiqa.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.pagination: PaginationConfig = PaginationConfig()
        self.rate_limit: RateLimitConfig = RateLimitConfig()
        self.auth: AuthConfig = AuthConfig()
        self.analytics: AnalyticsConfig = AnalyticsConfig()
        self.api: ApiConfig = ApiConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")
            self._apply_env_overrides()
            self._validate()

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_database()
        self._parse_pagination()
        self._parse_rate_limit()
        self._parse_auth()
        self._parse_analytics()
        self._parse_api()
        self._parse_logging()
        self._apply_env_overrides()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Config section '{name}' must be a mapping")
        return cfg

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        defaults = DatabaseConfig()
        self.database = DatabaseConfig(
            host=cfg.get('host', defaults.host),
            port=cfg.get('port', defaults.port),
            user=cfg.get('user', defaults.user),
            password=cfg.get('password', defaults.password),
            name=cfg.get('name', defaults.name),
            url=cfg.get('url', defaults.url),
            pool_size=cfg.get('pool_size', defaults.pool_size),
            max_overflow=cfg.get('max_overflow', defaults.max_overflow),
            pool_timeout=cfg.get('pool_timeout', defaults.pool_timeout),
            pool_recycle=cfg.get('pool_recycle', defaults.pool_recycle),
            echo=cfg.get('echo', defaults.echo),
            slow_query_ms=cfg.get('slow_query_ms', defaults.slow_query_ms)
        )

    def _parse_pagination(self) -> None:
        """Parse pagination configuration"""
        cfg = self._section('pagination')
        self.pagination = PaginationConfig(
            max_event_page_size=cfg.get('max_event_page_size', 100),
            max_case_page_size=cfg.get('max_case_page_size', 200)
        )

    def _parse_rate_limit(self) -> None:
        """Parse rate limit configuration"""
        cfg = self._section('rate_limit')
        self.rate_limit = RateLimitConfig(
            enabled=cfg.get('enabled', True),
            max_requests=cfg.get('max_requests', 60),
            window_seconds=cfg.get('window_seconds', 60)
        )

    def _parse_auth(self) -> None:
        """Parse auth configuration"""
        cfg = self._section('auth')
        self.auth = AuthConfig(
            jwt_secret=cfg.get('jwt_secret', DEFAULT_JWT_SECRET),
            jwt_algorithm=cfg.get('jwt_algorithm', 'HS256'),
            token_ttl_hours=cfg.get('token_ttl_hours', 168),
            bcrypt_rounds=cfg.get('bcrypt_rounds', 10)
        )

    def _parse_analytics(self) -> None:
        """Parse analytics configuration"""
        cfg = self._section('analytics')
        self.analytics = AnalyticsConfig(
            top_n=cfg.get('top_n', 10)
        )

    def _parse_api(self) -> None:
        """Parse API configuration"""
        cfg = self._section('api')
        defaults = ApiConfig()
        self.api = ApiConfig(
            cors_origins=cfg.get('cors_origins', defaults.cors_origins),
            security_log_dir=cfg.get('security_log_dir', defaults.security_log_dir)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', 'logs/authentiqa.log'),
            console=cfg.get('console', True),
            format=cfg.get('format', LoggingConfig().format)
        )

    def _apply_env_overrides(self) -> None:
        """Environment variables take precedence over the file"""
        database_url = os.getenv("DATABASE_URL")
        if database_url:
            self.database.url = database_url

        jwt_secret = os.getenv("JWT_SECRET")
        if jwt_secret:
            self.auth.jwt_secret = jwt_secret

        cors_origins = os.getenv("CORS_ORIGINS")
        if cors_origins:
            self.api.cors_origins = [o.strip() for o in cors_origins.split(",") if o.strip()]

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary. Secrets are masked."""
        return {
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name,
                'url_configured': bool(self.database.url),
                'pool_size': self.database.pool_size,
                'slow_query_ms': self.database.slow_query_ms
            },
            'pagination': {
                'max_event_page_size': self.pagination.max_event_page_size,
                'max_case_page_size': self.pagination.max_case_page_size
            },
            'rate_limit': {
                'enabled': self.rate_limit.enabled,
                'max_requests': self.rate_limit.max_requests,
                'window_seconds': self.rate_limit.window_seconds
            },
            'auth': {
                'jwt_algorithm': self.auth.jwt_algorithm,
                'token_ttl_hours': self.auth.token_ttl_hours
            },
            'analytics': {
                'top_n': self.analytics.top_n
            },
            'api': {
                'cors_origins': self.api.cors_origins
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            }
        }

    def _validate(self) -> None:
        """Validate configuration values

        Raises:
            ConfigurationError: If any value is out of range
        """
        errors = []

        for name in ('max_event_page_size', 'max_case_page_size'):
            value = getattr(self.pagination, name)
            if not isinstance(value, int) or value < 1:
                errors.append(f"pagination.{name} must be a positive integer")

        if not isinstance(self.database.slow_query_ms, (int, float)) or self.database.slow_query_ms <= 0:
            errors.append("database.slow_query_ms must be positive")

        if not isinstance(self.rate_limit.max_requests, int) or self.rate_limit.max_requests < 1:
            errors.append("rate_limit.max_requests must be a positive integer")
        if not isinstance(self.rate_limit.window_seconds, (int, float)) or self.rate_limit.window_seconds <= 0:
            errors.append("rate_limit.window_seconds must be positive")

        if not self.auth.jwt_secret:
            errors.append("auth.jwt_secret must not be empty")
        if self.auth.jwt_algorithm not in ('HS256', 'HS384', 'HS512'):
            errors.append("auth.jwt_algorithm must be one of HS256, HS384, HS512")
        if not isinstance(self.auth.token_ttl_hours, int) or self.auth.token_ttl_hours < 1:
            errors.append("auth.token_ttl_hours must be a positive integer")
        if not isinstance(self.auth.bcrypt_rounds, int) or not 4 <= self.auth.bcrypt_rounds <= 31:
            errors.append("auth.bcrypt_rounds must be between 4 and 31")

        if not isinstance(self.analytics.top_n, int) or self.analytics.top_n < 1:
            errors.append("analytics.top_n must be a positive integer")

        if self.logging.level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"logging.level is not a valid level: {self.logging.level}")

        if errors:
            raise ConfigurationError("; ".join(errors))

        if self.auth.jwt_secret == DEFAULT_JWT_SECRET:
            logger.warning("Using the default JWT secret; set JWT_SECRET in production")


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
