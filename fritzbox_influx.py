#!/usr/bin/env python3
"""
InfluxDB line protocol adapter for FRITZ!Box WAN metrics.

Meant to run under a collector's ``execd`` input: every line received on stdin
triggers one poll of the router's UPnP services, and one metric line is
written to stdout in return. Diagnostics go to stderr.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import Iterable, Optional, TextIO

from prometheus_client import CollectorRegistry, Counter, Histogram, start_http_server

import fritzbox_upnp_client
from fritzbox_influx_utils import format_line
from fritzbox_models import CycleState, MetricSpec, ServiceResults
from fritzbox_upnp_client_exceptions import *
from fritzbox_utils import DEFAULT_HOST, DEFAULT_PORT, parse_port, render_value

# Level prefixes understood by the collector when it reads our stderr
logging.basicConfig(
    level=logging.INFO,
    stream=sys.stderr,
    format="%(levelname).1s! %(message)s"
)
logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "fritzbox"
WAN_SOURCE = "wan"

WAN_COMMON_INTERFACE_CONFIG = "urn:schemas-upnp-org:service:WANCommonInterfaceConfig:1"
WAN_IP_CONNECTION = "urn:schemas-upnp-org:service:WANIPConnection:1"

WAN_METRICS: tuple[MetricSpec, ...] = (
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetTotalPacketsReceived", "TotalPacketsReceived", "packets_received"),
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetTotalPacketsSent", "TotalPacketsSent", "packets_sent"),

    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetAddonInfos", "TotalBytesReceived", "bytes_received"),
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetAddonInfos", "TotalBytesSent", "bytes_sent"),
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetAddonInfos", "ByteSendRate", "bytes_send_rate"),
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetAddonInfos", "ByteReceiveRate", "bytes_receive_rate"),
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetAddonInfos", "PacketSendRate", "packet_send_rate"),
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetAddonInfos", "PacketReceiveRate", "packet_receive_rate"),
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetAddonInfos", "NewX_AVM_DE_TotalBytesSent64", "total_bytes_sent_64"),
    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetAddonInfos", "NewX_AVM_DE_TotalBytesReceived64",
               "total_bytes_received_64"),

    MetricSpec(WAN_COMMON_INTERFACE_CONFIG, "GetCommonLinkProperties", "PhysicalLinkStatus", "link_status"),

    MetricSpec(WAN_IP_CONNECTION, "GetStatusInfo", "ConnectionStatus", "connection_status"),
    MetricSpec(WAN_IP_CONNECTION, "GetStatusInfo", "LastConnectionError", "last_connection_error"),
    MetricSpec(WAN_IP_CONNECTION, "GetStatusInfo", "Uptime", "uptime"),
)

# Metrics Registry
registry = CollectorRegistry()

poll_cycles_total = Counter(
    "fritzbox_poll_cycles_total",
    "Total number of poll cycles run",
    registry=registry,
)

poll_duration_seconds = Histogram(
    "fritzbox_poll_duration_seconds",
    "Time spent polling the router for one metric line",
    registry=registry,
)

action_invocations_total = Counter(
    "fritzbox_action_invocations_total",
    "Total number of remote UPnP action calls",
    ["service", "action"],
    registry=registry,
)

action_cache_hits_total = Counter(
    "fritzbox_action_cache_hits_total",
    "Remote calls skipped because the previous result was reused",
    ["service", "action"],
    registry=registry,
)

metric_errors_total = Counter(
    "fritzbox_metric_errors_total",
    "Metric entries skipped during a poll cycle",
    ["reason"],
    registry=registry,
)


class CallCache:
    """Remembers the last (service, action) call and its result.

    Consecutive table entries reading different fields of the same action
    response share one remote call. The slot is never reset between poll
    cycles, and failed lookups or calls leave it untouched.
    """

    def __init__(self, directory: fritzbox_upnp_client.ServiceDirectory):
        self.directory = directory
        self.last_service: Optional[str] = None
        self.last_action: Optional[str] = None
        self.result: dict[str, object] = {}

    def is_cached(self, service: str, action: str) -> bool:
        return service == self.last_service and action == self.last_action

    def invoke_if_needed(self, service: str, action: str) -> dict[str, object]:
        if self.is_cached(service, action):
            action_cache_hits_total.labels(service=service, action=action).inc()
            return self.result

        upnp_action = self.directory.lookup(service).lookup(action)
        action_invocations_total.labels(service=service, action=action).inc()
        result = upnp_action.invoke()

        self.last_service = service
        self.last_action = action
        self.result = result
        return result


class PollCycleController:
    """Runs one pass over the metric table per trigger and emits one line."""

    def __init__(self, directory: fritzbox_upnp_client.ServiceDirectory, host: str,
                 bucket: str = DEFAULT_BUCKET, metrics: Iterable[MetricSpec] = WAN_METRICS,
                 cache: Optional[CallCache] = None):
        self.host = host
        self.bucket = bucket
        self.metrics = tuple(metrics)
        self.cache = cache if cache is not None else CallCache(directory)
        self._state = CycleState.IDLE

    @property
    def state(self) -> CycleState:
        return self._state

    def poll_once(self) -> ServiceResults:
        # Currently we only have wan stats, no need to split
        results = ServiceResults(name=WAN_SOURCE)
        for m in self.metrics:
            try:
                result = self.cache.invoke_if_needed(m.service, m.action)
            except ServiceNotFound as e:
                logger.warning(str(e))
                metric_errors_total.labels(reason="service_not_found").inc()
                continue
            except ActionNotFound as e:
                logger.warning(str(e))
                metric_errors_total.labels(reason="action_not_found").inc()
                continue
            except InvocationError as e:
                logger.error(f"Unable to call action {m.action} on service {m.service}: {e}")
                metric_errors_total.labels(reason="invocation_error").inc()
                continue

            results.append(m.name, render_value(result.get(m.result)))

        logger.debug(f"Poll cycle done: {len(results)}/{len(self.metrics)} entries collected")
        return results

    def collect(self) -> str:
        self._state = CycleState.RUNNING
        try:
            with poll_duration_seconds.time():
                results = self.poll_once()
            poll_cycles_total.inc()
            return format_line(self.bucket, self.host, results)
        finally:
            self._state = CycleState.IDLE

    def run(self, triggers: Iterable[str], output: TextIO) -> int:
        """Emit one metric line per trigger line until the trigger stream ends."""
        cycles = 0
        for _ in triggers:
            output.write(self.collect() + "\n")
            output.flush()
            cycles += 1
        return cycles


def create_app(host: str, port: int, bucket: str = DEFAULT_BUCKET, metrics_port: int = 0,
               trigger: Optional[TextIO] = None, output: Optional[TextIO] = None):
    """
    Create the line protocol adapter.

    Args:
        host: FRITZ!Box host/IP address
        port: UPnP control port
        bucket: Measurement name of the emitted lines
        metrics_port: Port for the adapter's own Prometheus metrics, 0 disables it
        trigger: Stream whose lines trigger poll cycles (default: stdin)
        output: Stream the metric lines are written to (default: stdout)

    Returns:
        Callable that runs the adapter and returns the process exit status
    """

    def app() -> int:
        logger.info(f"Loading UPnP services from {host}:{port}")
        try:
            directory = fritzbox_upnp_client.load_services(host, port)
        except DiscoveryError as e:
            logger.critical(f"fritzbox: unable to load services: {e}")
            return 1

        if metrics_port:
            start_http_server(metrics_port, registry=registry)
            logger.info(f"Adapter metrics available at http://localhost:{metrics_port}/metrics")

        controller = PollCycleController(directory, host, bucket=bucket)
        try:
            cycles = controller.run(trigger or sys.stdin, output or sys.stdout)
            logger.info(f"Trigger stream closed after {cycles} cycles")
        except KeyboardInterrupt:
            logger.info("Shutting down")
        return 0

    return app


def _port_arg(s: str) -> int:
    port = parse_port(s, default=-1)
    if port < 0:
        raise argparse.ArgumentTypeError(f"invalid port: {s!r}")
    return port


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point for the line protocol adapter."""
    # Read defaults from environment variables
    default_host = os.getenv("FRITZBOX_HOST") or DEFAULT_HOST
    default_port = parse_port(os.getenv("FRITZBOX_PORT"))
    default_bucket = os.getenv("FRITZBOX_BUCKET") or DEFAULT_BUCKET
    default_metrics_port = parse_port(os.getenv("FRITZBOX_METRICS_PORT"), default=0)
    default_log_level = os.getenv("FRITZBOX_LOG_LEVEL", "INFO").upper()

    parser = argparse.ArgumentParser(
        description="Poll FRITZ!Box WAN counters and print InfluxDB line protocol, one line per stdin line",
        epilog="Environment variables can be used as defaults: "
               "FRITZBOX_HOST, FRITZBOX_PORT, FRITZBOX_BUCKET, FRITZBOX_METRICS_PORT, FRITZBOX_LOG_LEVEL"
    )
    parser.add_argument(
        "--host",
        default=default_host,
        help=f"FRITZ!Box host or IP address (default: {DEFAULT_HOST}) [env: FRITZBOX_HOST]"
    )
    parser.add_argument(
        "--port",
        type=_port_arg,
        default=default_port,
        help=f"UPnP control port (default: {DEFAULT_PORT}) [env: FRITZBOX_PORT]"
    )
    parser.add_argument(
        "--bucket",
        default=default_bucket,
        help=f"Measurement name of emitted lines (default: {DEFAULT_BUCKET}) [env: FRITZBOX_BUCKET]"
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=default_metrics_port,
        help="Port to expose the adapter's own Prometheus metrics on, 0 disables (default: 0) "
             "[env: FRITZBOX_METRICS_PORT]"
    )
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO) [env: FRITZBOX_LOG_LEVEL]"
    )

    args = parser.parse_args(argv)

    # Set logging level
    logging.getLogger().setLevel(getattr(logging, args.log_level))

    app = create_app(args.host, args.port, args.bucket, args.metrics_port)
    return app()


if __name__ == "__main__":
    sys.exit(main())
