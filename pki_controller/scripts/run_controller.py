#!/usr/bin/env python3
"""Run the PKI controller: issue pod certificates from an intermediate CA signed by OpenBao."""

import argparse
import dataclasses
import signal
import sys
import threading

from pki_controller.lib.bao_client import BaoClient
from pki_controller.lib.ca_manager import IntermediateCA
from pki_controller.lib.config import ControllerConfig
from pki_controller.lib.controller import Controller
from pki_controller.lib.errors import ConfigurationError
from pki_controller.lib.k8s_client import PodCertificateRequestClient, load_kube_config
from pki_controller.lib.logging_config import LOGGER, set_log_level
from pki_controller.lib.reconciler import Reconciler


def build_controller(config: ControllerConfig) -> Controller:
    """Wire the backend client, CA manager, reconciler and driver together."""
    ca = IntermediateCA(BaoClient.from_config(config), config)
    requests_client = PodCertificateRequestClient()
    reconciler = Reconciler(ca, requests_client, config)
    return Controller(reconciler, requests_client, config)


def main(argv: list[str] | None = None) -> int:
    """Run the controller until SIGINT/SIGTERM.

    Returns:
        Exit code (0 after clean shutdown, 1 for startup failure)
    """
    parser = argparse.ArgumentParser(
        description="Issue PodCertificateRequest certificates from an OpenBao-signed intermediate CA"
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Maximum concurrent reconciliations (default: PKI_CONTROLLER_CONCURRENCY or 2)",
    )
    args = parser.parse_args(argv)

    set_log_level(args.log_level)

    try:
        config = ControllerConfig.from_env()
        if args.concurrency is not None:
            if args.concurrency < 1:
                raise ConfigurationError("--concurrency must be at least 1")
            config = dataclasses.replace(config, concurrency=args.concurrency)
        load_kube_config()
        controller = build_controller(config)
    except ConfigurationError as e:
        LOGGER.error("Startup failed: %s", e)
        return 1

    for signum in (signal.SIGINT, signal.SIGTERM):
        signal.signal(signum, lambda *_: controller.stop())

    LOGGER.info("starting openbao-pki-controller")
    LOGGER.info("press <enter> to force a reconciliation of all objects")
    threading.Thread(
        target=controller.watch_stdin, args=(sys.stdin,), name="stdin", daemon=True
    ).start()

    controller.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
