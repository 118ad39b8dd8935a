"""
Configuration Management Module
Loads and validates duplicate-detection configuration from config.yaml
"""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class DatabaseConfig:
    """Database configuration"""
    host: str = "localhost"
    port: int = 5432
    user: str = "mdm_user"
    password: str = "mdm_password"
    name: str = "mdm_database"


@dataclass
class MatchingConfig:
    """Matching configuration parameters

    The fuzzy name threshold is deliberately absent: it is fixed at 0.95
    in name_matching.FUZZY_MATCH_THRESHOLD.
    """
    min_name_length: int = 3
    established_address_type: str = "Main"


@dataclass
class PerformanceConfig:
    """Performance configuration"""
    max_threads: int = 4
    batch_size: int = 250
    parallel_scan_threshold: int = 1000
    lock_timeout_seconds: float = 5.0


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: Optional[str] = None
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@dataclass
class AlgorithmConfig:
    """Algorithm version information"""
    version: str = "1.0.0"
    name: str = "Established VAT + Fuzzy Name Duplicate Detector"


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
        self.matching: MatchingConfig = MatchingConfig()
        self.performance: PerformanceConfig = PerformanceConfig()
        self.logging: LoggingConfig = LoggingConfig()
        self.algorithm: AlgorithmConfig = AlgorithmConfig()
        self.database: DatabaseConfig = DatabaseConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        search_paths = [
            Path.cwd() / "config.yaml",
            Path(__file__).parent / "config.yaml",
            Path(__file__).parent.parent / "config.yaml",
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

        self._parse_matching()
        self._parse_performance()
        self._parse_logging()
        self._parse_algorithm()
        self._parse_database()
        self._validate()

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._raw_config.get('database', {})
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name)
        )

    def _parse_matching(self) -> None:
        """Parse matching configuration"""
        cfg = self._raw_config.get('matching', {})
        if 'fuzzy_threshold' in cfg:
            logger.warning("matching.fuzzy_threshold is not configurable and will be ignored")

        self.matching = MatchingConfig(
            min_name_length=cfg.get('min_name_length', 3),
            established_address_type=cfg.get('established_address_type', 'Main')
        )

    def _parse_performance(self) -> None:
        """Parse performance configuration"""
        cfg = self._raw_config.get('performance', {})
        self.performance = PerformanceConfig(
            max_threads=cfg.get('max_threads', 4),
            batch_size=cfg.get('batch_size', 250),
            parallel_scan_threshold=cfg.get('parallel_scan_threshold', 1000),
            lock_timeout_seconds=cfg.get('lock_timeout_seconds', 5.0)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._raw_config.get('logging', {})
        self.logging = LoggingConfig(
            level=str(cfg.get('level', 'INFO')).upper(),
            file=cfg.get('file'),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    def _parse_algorithm(self) -> None:
        """Parse algorithm configuration"""
        cfg = self._raw_config.get('algorithm', {})
        self.algorithm = AlgorithmConfig(
            version=cfg.get('version', self.algorithm.version),
            name=cfg.get('name', self.algorithm.name)
        )

    def _validate(self) -> None:
        """Validate configuration values"""
        errors = []

        if not isinstance(self.matching.min_name_length, int) or self.matching.min_name_length < 1:
            errors.append("matching.min_name_length must be a positive integer")
        if not self.matching.established_address_type:
            errors.append("matching.established_address_type must not be empty")

        perf = self.performance
        if not isinstance(perf.max_threads, int) or perf.max_threads < 1:
            errors.append("performance.max_threads must be >= 1")
        if not isinstance(perf.batch_size, int) or perf.batch_size < 1:
            errors.append("performance.batch_size must be >= 1")
        if not isinstance(perf.parallel_scan_threshold, int) or perf.parallel_scan_threshold < 0:
            errors.append("performance.parallel_scan_threshold must be >= 0")
        if not isinstance(perf.lock_timeout_seconds, (int, float)) or perf.lock_timeout_seconds < 0:
            errors.append("performance.lock_timeout_seconds must be >= 0")

        if self.logging.level not in VALID_LOG_LEVELS:
            errors.append(f"logging.level must be one of {', '.join(VALID_LOG_LEVELS)}")

        if errors:
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

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
        """Export configuration as dictionary (password omitted)"""
        return {
            'matching': {
                'min_name_length': self.matching.min_name_length,
                'established_address_type': self.matching.established_address_type
            },
            'performance': {
                'max_threads': self.performance.max_threads,
                'batch_size': self.performance.batch_size,
                'parallel_scan_threshold': self.performance.parallel_scan_threshold,
                'lock_timeout_seconds': self.performance.lock_timeout_seconds
            },
            'logging': {
                'level': self.logging.level,
                'file': self.logging.file,
                'console': self.logging.console
            },
            'algorithm': {
                'version': self.algorithm.version,
                'name': self.algorithm.name
            },
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name
            }
        }


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)


def configure_logging(logging_config: LoggingConfig) -> None:
    """Configure root logging handlers from a LoggingConfig

    Args:
        logging_config: Logging section of the configuration
    """
    handlers = []
    formatter = logging.Formatter(logging_config.format)

    if logging_config.console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if logging_config.file:
        log_path = Path(logging_config.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.setLevel(logging_config.level)
    for handler in handlers:
        root.addHandler(handler)
