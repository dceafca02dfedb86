#!/usr/bin/env python3

from prometheus_client import Gauge, Counter
import logging


# OLT command sessions (one per connect/optics call)
class SessionMetrics:
    """Metrics about the SSH/Telnet sessions opened against the OLT"""

    session_duration_seconds = Gauge(
        'olt_session_duration_seconds',
        'Duration of the last OLT command session in seconds',
        ['protocol', 'operation']
    )

    session_success = Gauge(
        'olt_session_success',
        'Last OLT command session status (1=success, 0=failure)',
        ['protocol', 'operation']
    )

    session_errors_total = Counter(
        'olt_session_errors_total',
        'Total number of failed OLT command sessions',
        ['protocol', 'error_kind']
    )

    last_session_timestamp = Gauge(
        'olt_last_session_timestamp_seconds',
        'Timestamp of the last successful OLT command session',
        ['protocol', 'operation']
    )


# ONT optics readings
class OpticsMetrics:
    """Optical readings parsed from OLT output"""

    ont_rx_power = Gauge(
        'olt_ont_rx_power_dbm',
        'ONT received optical power in dBm',
        ['ont_path']
    )

    ont_rx_power_missing = Counter(
        'olt_ont_rx_power_missing_total',
        'Optics reads whose output carried no dBm value',
        ['ont_path']
    )


# Create instances for easy access
session_metrics = SessionMetrics()
optics_metrics = OpticsMetrics()


def log_metrics_summary():
    """Log a summary of all registered metrics"""
    from prometheus_client import REGISTRY
    logging.info("=== Registered Prometheus Metrics ===")
    for metric in REGISTRY.collect():
        if metric.name.startswith('olt_'):
            logging.info(f"- {metric.name} ({metric.type})")
