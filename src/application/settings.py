"""Application settings configuration."""

import logging
import os
import sys
from typing import Any

from neuroglia.hosting.abstractions import ApplicationSettings


class Settings(ApplicationSettings):
    """Operator settings loaded from environment variables and an optional .env file."""

    # Logging Configuration
    log_level: str = "INFO"

    # Application Configuration
    app_name: str = "EC2 Instance Operator"
    app_version: str = "1.0.0"

    # Health Probes
    health_probe_bind_address: str = ":8081"

    # AWS Account Credentials (ambient boto3 credential chain when unset)
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None

    # Kubernetes Configuration
    kube_config_path: str | None = None  # Falls back to ~/.kube/config outside the cluster
    kube_in_cluster: bool | None = None  # None = try in-cluster first, then kubeconfig
    watch_namespace: str = ""  # Empty = watch all namespaces
    watch_timeout_seconds: int = 300

    # Reconciliation
    max_concurrent_reconciles: int = 4
    reconcile_timeout_seconds: int = 600  # Deadline for one reconcile, shortens the waits below
    resync_interval_seconds: int = 300  # Periodic full resync of every resource
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 300.0
    empty_create_requeue_seconds: float = 30.0  # Requeue delay when RunInstances returned nothing

    # Bounded Waits
    create_wait_timeout_seconds: float = 180.0  # 3 minutes for the instance to reach running
    create_poll_interval_seconds: float = 15.0
    terminate_wait_timeout_seconds: float = 300.0  # 5 minutes for the instance to reach terminated
    terminate_poll_interval_seconds: float = 10.0

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables

    def __init__(self, **kwargs: Any) -> None:
        """Initialize settings."""
        super().__init__(**kwargs)
        # Treat blank credentials as absent so the ambient chain is used
        if not self.aws_access_key_id or not self.aws_secret_access_key:
            self.aws_access_key_id = None
            self.aws_secret_access_key = None


def configure_logging(log_level: str = "INFO") -> None:
    """Configure application-wide logging.

    Installs a stdout handler on the root logger and sets third-party
    libraries to WARNING to reduce noise. An optional file handler is added
    when the LOG_FILE environment variable is set.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level = log_level.upper()

    # Get root logger and clear any existing handlers to prevent duplicates
    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.handlers.clear()

    root_logger.setLevel(log_level)

    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter = logging.Formatter(log_format)

    # Console handler (always enabled for cloud-native environments)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file:
        try:
            os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            root_logger.warning(f"Unable to open log file {log_file}: {e}")

    third_party_loggers = [
        "uvicorn",
        "uvicorn.access",
        "uvicorn.error",
        "fastapi",
        "botocore",
        "boto3",
        "urllib3",
        "kubernetes",
        "asyncio",
    ]

    for logger_name in third_party_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
