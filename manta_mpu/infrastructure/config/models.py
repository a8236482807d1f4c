"""
Configuration models and data structures.

This module defines the configuration models used throughout the application,
providing type safety and validation for configuration values.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urlparse


@dataclass
class ServiceConfig:
    """Storage service endpoint and credentials."""
    url: str = "https://us-east.manta.joyent.com"
    account: str = ""
    user: Optional[str] = None
    key_id: str = ""
    key_material: Optional[str] = None
    timeout: float = 300.0
    verify_tls: bool = True


@dataclass
class UploadConfig:
    """Multipart upload policy."""
    max_concurrent_parts: int = 4
    part_size: int = 5 * 1024 * 1024
    default_durability: int = 2
    min_durability: int = 1
    max_durability: int = 6
    max_parts: Optional[int] = 10000
    min_part_size: int = 0
    max_part_number: Optional[int] = None


@dataclass
class RetryConfig:
    """Retry and backoff settings."""
    max_attempts: int = 5
    base_delay: float = 0.1
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    max_elapsed: float = 120.0


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_directory: str = "logs"
    max_file_size: str = "10 MB"
    backup_count: int = 5
    console_enabled: bool = True
    file_enabled: bool = False


@dataclass
class ApplicationConfig:
    """Main application configuration."""

    name: str = "Manta MPU"
    version: str = "0.1.0"
    debug: bool = False

    service: ServiceConfig = field(default_factory=ServiceConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    config_file_path: Optional[str] = None

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        self._validate_service()
        self._validate_upload()
        self._validate_retry()

    def _validate_service(self) -> None:
        parsed = urlparse(self.service.url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Service URL must be http(s)://host, got {self.service.url!r}")
        if self.service.timeout <= 0:
            raise ValueError(f"Service timeout must be positive, got {self.service.timeout}")

    def _validate_upload(self) -> None:
        upload = self.upload
        if upload.max_concurrent_parts < 1:
            raise ValueError("max_concurrent_parts must be at least 1")
        if upload.part_size <= 0:
            raise ValueError("part_size must be positive")
        if upload.min_part_size < 0 or upload.part_size < upload.min_part_size:
            raise ValueError("part_size must be at least min_part_size")
        if not 1 <= upload.min_durability <= upload.max_durability:
            raise ValueError("Durability bounds must satisfy 1 <= min <= max")
        if not upload.min_durability <= upload.default_durability <= upload.max_durability:
            raise ValueError(
                f"default_durability {upload.default_durability} is outside "
                f"{upload.min_durability}-{upload.max_durability}"
            )
        if upload.max_parts is not None and upload.max_parts < 1:
            raise ValueError("max_parts must be positive")

    def _validate_retry(self) -> None:
        retry = self.retry
        if retry.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if retry.base_delay < 0 or retry.max_delay < 0:
            raise ValueError("Retry delays cannot be negative")
        if retry.max_elapsed <= 0:
            raise ValueError("max_elapsed must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ApplicationConfig':
        """Create configuration from dictionary."""
        return cls(
            name=data.get('name', 'Manta MPU'),
            version=data.get('version', '0.1.0'),
            debug=data.get('debug', False),
            service=ServiceConfig(**data.get('service', {})),
            upload=UploadConfig(**data.get('upload', {})),
            retry=RetryConfig(**data.get('retry', {})),
            logging=LoggingConfig(**data.get('logging', {})),
            config_file_path=data.get('config_file_path'),
        )
