"""EC2 Instance Operator - Main Entry Point.

Runs the Ec2Instance controller (watch, work queue, reconcile workers) and the
health probe server in one event loop.
"""

import argparse
import asyncio
import logging

import uvicorn

from api.health import create_health_app
from application.services.controller_service import ControllerService
from application.services.ec2_instance_reconciler import Ec2InstanceReconciler
from application.services.instance_lifecycle_service import InstanceLifecycleService
from application.settings import Settings, configure_logging
from domain.services.spec_validation_service import SpecValidationService
from integration.repositories.kubernetes_ec2_instance_repository import KubernetesEc2InstanceRepository
from integration.services.aws_ec2_api_client import AwsAccountCredentials, AwsEc2Client

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="EC2 Instance Operator - reconciles Ec2Instance resources with AWS EC2")
    parser.add_argument(
        "--health-probe-bind-address",
        help="Address the probe endpoint binds to (default: :8081)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--max-concurrent-reconciles",
        type=int,
        help="Number of resources reconciled in parallel (default: 4)",
    )
    return parser.parse_args(argv)


def parse_bind_address(address: str) -> tuple[str, int]:
    """Split a "host:port" bind address; an empty host binds all interfaces."""
    host, _, port = address.rpartition(":")
    if not port.isdigit():
        raise ValueError(f"Invalid bind address '{address}', expected [host]:port")
    return host or "0.0.0.0", int(port)


def load_settings(args: argparse.Namespace) -> Settings:
    """Build settings from the environment, with command-line flags taking precedence."""
    overrides = {
        key: value
        for key, value in {
            "health_probe_bind_address": args.health_probe_bind_address,
            "log_level": args.log_level,
            "max_concurrent_reconciles": args.max_concurrent_reconciles,
        }.items()
        if value is not None
    }
    return Settings(**overrides)


class OperatorApplication:
    """Main operator application."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.controller_service: ControllerService | None = None
        self.probe_server: uvicorn.Server | None = None

    def build(self) -> None:
        """Wire the repository, the AWS client and the controller together."""
        settings = self.settings
        repository = KubernetesEc2InstanceRepository.create(
            kube_config_path=settings.kube_config_path,
            in_cluster=settings.kube_in_cluster,
            namespace=settings.watch_namespace or None,
            watch_timeout_seconds=settings.watch_timeout_seconds,
        )

        credentials = None
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            credentials = AwsAccountCredentials(
                aws_access_key_id=settings.aws_access_key_id,
                aws_secret_access_key=settings.aws_secret_access_key,
            )
        lifecycle_service = InstanceLifecycleService(
            AwsEc2Client(credentials),
            create_wait_timeout=settings.create_wait_timeout_seconds,
            create_poll_interval=settings.create_poll_interval_seconds,
            terminate_wait_timeout=settings.terminate_wait_timeout_seconds,
            terminate_poll_interval=settings.terminate_poll_interval_seconds,
        )
        reconciler = Ec2InstanceReconciler(
            repository,
            lifecycle_service,
            SpecValidationService(),
            empty_create_requeue_seconds=settings.empty_create_requeue_seconds,
        )
        self.controller_service = ControllerService(repository, reconciler, settings)

        host, port = parse_bind_address(settings.health_probe_bind_address)
        probe_app = create_health_app(
            lambda: self.controller_service is not None and self.controller_service.is_ready,
            app_name=settings.app_name,
            version=settings.app_version,
        )
        self.probe_server = uvicorn.Server(uvicorn.Config(probe_app, host=host, port=port, log_config=None))

    async def run_async(self):
        """Run until the probe server receives SIGINT/SIGTERM, then stop the controller."""
        if self.controller_service is None or self.probe_server is None:
            self.build()

        logger.info(f"Starting {self.settings.app_name} v{self.settings.app_version}")
        await self.controller_service.start_async()
        logger.info(f"Health probes listening on {self.settings.health_probe_bind_address}")
        try:
            # uvicorn owns the signal handlers and returns once asked to shut down
            await self.probe_server.serve()
        finally:
            await self.stop_async()

    async def stop_async(self):
        """Stop the operator."""
        logger.info(f"Stopping {self.settings.app_name}...")

        if self.probe_server:
            self.probe_server.should_exit = True
        if self.controller_service:
            await self.controller_service.stop_async()

        logger.info(f"{self.settings.app_name} stopped")


def main(argv: list[str] | None = None):
    """Main entry point."""
    settings = load_settings(parse_args(argv))
    configure_logging(log_level=settings.log_level)

    app = OperatorApplication(settings)
    try:
        asyncio.run(app.run_async())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")


if __name__ == "__main__":
    main()
