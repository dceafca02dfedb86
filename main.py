#!/usr/bin/env python3

import argparse
import json
import logging
import logging.handlers
import sys
import time
from prometheus_client import start_http_server
from config import config
from errors import INTERNAL_ERROR_STATUS, error_payload, is_client_error, status_for
from metrics_registry import log_metrics_summary
from olt_service import OLTCommandService


def setup_logging():
    """Configure logging for the application."""
    formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(message)s')

    handlers = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            config.log_file, maxBytes=config.log_max_bytes, backupCount=config.log_backup_count
        ))
    for handler in handlers:
        handler.setFormatter(formatter)

    log_level = logging.DEBUG if config.debug_logging else config.log_level
    logging.basicConfig(level=log_level, handlers=handlers)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Read ONT optics (RX dBm) from a Nokia OLT over SSH or Telnet")

    overrides = argparse.ArgumentParser(add_help=False)
    overrides.add_argument('--host', help="OLT host (default: OLT_HOST_DEFAULT)")
    overrides.add_argument('--port', type=int, help="OLT port (default depends on PROTOCOL)")
    overrides.add_argument('--username', help="OLT username (default: OLT_USERNAME)")
    overrides.add_argument('--password', help="OLT password (default: OLT_PASSWORD)")

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('connect', parents=[overrides], help="Test connectivity with 'show version'")

    optics = subparsers.add_parser('optics', parents=[overrides], help="Fetch RX dBm for one ONT")
    optics.add_argument('ont', help="ONT path shelf/slot/pon/ont/x, e.g. 1/1/3/2/1")

    watch = subparsers.add_parser('watch', parents=[overrides], help="Poll ONTs and export Prometheus metrics")
    watch.add_argument('onts', nargs='+', help="ONT paths to poll")
    watch.add_argument('--interval', type=int, default=None,
                       help="Seconds between polls (default: COLLECTION_INTERVAL_SECONDS)")

    return parser


def overrides_from_args(args) -> dict:
    return {
        'host': args.host,
        'port': args.port,
        'username': args.username,
        'password': args.password,
    }


def watch_onts(service: OLTCommandService, onts, overrides: dict, interval: int):
    """Poll every ONT each interval; failures are logged and counted, never fatal"""
    start_http_server(config.metrics_port, addr=config.metrics_host)
    logging.info(f"Prometheus metrics server started on {config.metrics_host}:{config.metrics_port}")

    # Only log metrics summary in debug mode
    if config.debug_logging:
        log_metrics_summary()

    logging.info(f"Starting optics collection for {len(onts)} ONT(s) every {interval}s")

    while True:
        for ont in onts:
            try:
                reading = service.get_ont_optics(ont, overrides)
                logging.info(f"ONT {reading.ont_path}: RX {reading.rx_dbm} dBm")
            except Exception as e:
                logging.error(f"Error collecting optics for ONT {ont}: {e}")
        time.sleep(interval)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging()
    config.log_configuration()

    service = OLTCommandService()
    overrides = overrides_from_args(args)

    try:
        if args.command == 'connect':
            result = service.connect(overrides)
            print(json.dumps(result, indent=2))
        elif args.command == 'optics':
            reading = service.get_ont_optics(args.ont, overrides)
            print(json.dumps(reading.to_dict(), indent=2))
        elif args.command == 'watch':
            watch_onts(service, args.onts, overrides, args.interval or config.collection_interval_seconds)
    except KeyboardInterrupt:
        logging.info("Interrupted, exiting")
        return 0
    except Exception as e:
        status = status_for(e)
        if status == INTERNAL_ERROR_STATUS:
            logging.error(f"Unhandled error: {e}", exc_info=True)
        elif status >= 500:
            logging.error(f"OLT request failed ({status}): {e}")
        else:
            logging.warning(f"Request failed ({status}): {e}")
        print(json.dumps(dict(error_payload(e), status=status)), file=sys.stderr)
        return 2 if is_client_error(e) else 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
