#!/usr/bin/env python3

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from config import config
from credentials import ConnectionCache, ConnectionDefaults, ConnectionParameters, resolve_credentials
from errors import InvalidOnt, OltError
from metrics_registry import optics_metrics, session_metrics
from optics_parser import is_valid_ont_path, parse_rx_dbm
from ssh_runner import run_ssh_command
from telnet_runner import TelnetPrompts, run_telnet_command
from transport import CommandExecutionResult, ProtocolKind, select_protocol

TEST_COMMAND = 'show version'
OPTICS_COMMAND = 'show equipment ont optics ont-id {ont_path}'


@dataclass(frozen=True)
class OpticsReading:
    """RX power reading for one ONT; rx_dbm is None when the output carried no dBm value"""

    ont_path: str
    rx_dbm: Optional[float]
    raw: str
    observed_at: datetime
    exit_code: Optional[int]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ontPath': self.ont_path,
            'rxDbm': self.rx_dbm,
            'raw': self.raw,
            'at': self.observed_at.isoformat(),
            'exitCode': self.exit_code,
        }


class OLTCommandService:
    """Runs OLT CLI commands over the configured transport and shapes the results.

    Usage:
        service = OLTCommandService()
        service.connect({'host': '10.0.0.1', 'username': 'isadmin', 'password': '...'})
        reading = service.get_ont_optics('1/1/3/2/1')
    """

    def __init__(
        self,
        settings=None,
        cache: Optional[ConnectionCache] = None,
        ssh_runner: Optional[Callable[..., CommandExecutionResult]] = None,
        telnet_runner: Optional[Callable[..., CommandExecutionResult]] = None,
    ):
        self.settings = settings or config
        self.cache = cache if cache is not None else ConnectionCache()
        self.ssh_runner = ssh_runner or run_ssh_command
        self.telnet_runner = telnet_runner or run_telnet_command
        self.protocol = select_protocol(self.settings.protocol)
        self.defaults = ConnectionDefaults.from_config(self.settings)
        self.prompts = TelnetPrompts.from_values(
            self.settings.telnet_username_prompt,
            self.settings.telnet_password_prompt,
            self.settings.telnet_shell_prompt,
        )

    def resolve(self, overrides: Optional[Mapping[str, Any]] = None) -> ConnectionParameters:
        return resolve_credentials(overrides, self.cache, self.defaults, self.protocol)

    def _run(self, creds: ConnectionParameters, command: str, ssh_timeout: float, operation: str) -> CommandExecutionResult:
        """Run one command over the active transport, recording session metrics"""
        start_time = time.time()
        success = False
        protocol = self.protocol.value

        try:
            if self.protocol is ProtocolKind.SSH:
                result = self.ssh_runner(creds, command, timeout=ssh_timeout)
            else:
                result = self.telnet_runner(
                    creds,
                    command,
                    prompts=self.prompts,
                    login_timeout=self.settings.telnet_login_timeout_seconds,
                    command_timeout=self.settings.telnet_command_timeout_seconds,
                    line_terminator=self.settings.telnet_line_terminator,
                )
            success = True
            return result

        except OltError as e:
            session_metrics.session_errors_total.labels(protocol=protocol, error_kind=e.kind.value).inc()
            raise

        finally:
            duration = time.time() - start_time
            session_metrics.session_duration_seconds.labels(protocol=protocol, operation=operation).set(duration)
            session_metrics.session_success.labels(protocol=protocol, operation=operation).set(1 if success else 0)
            if success:
                session_metrics.last_session_timestamp.labels(protocol=protocol, operation=operation).set(time.time())

    def test_connection(self, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Verify the OLT answers a harmless command with the given or default credentials"""
        return self._test(self.resolve(overrides))

    def _test(self, creds: ConnectionParameters) -> Dict[str, Any]:
        result = self._run(creds, TEST_COMMAND, self.settings.ssh_test_timeout_seconds, 'test_connection')

        logging.info(
            f"OLT connection test successful: protocol={self.protocol.value} "
            f"host={creds.host} port={creds.port} username={creds.username}"
        )

        return {
            'ok': True,
            'stdout': result.stdout,
            'stderr': result.stderr,
            'host': creds.host,
            'port': creds.port,
            'username': creds.username,
            'protocol': self.protocol.value,
        }

    def connect(self, overrides: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Test the connection and remember exactly the credentials that passed"""
        creds = self.resolve(overrides)
        result = self._test(creds)
        self.cache_connection(creds)
        return result

    def get_ont_optics(self, ont_path, overrides: Optional[Mapping[str, Any]] = None) -> OpticsReading:
        """Run the ONT optics command for one ONT and parse its RX power"""
        if not ont_path or not isinstance(ont_path, str) or not ont_path.strip():
            raise InvalidOnt("ONT path is required (e.g. 1/1/3/2/1)")

        trimmed_ont = ont_path.strip()
        if not is_valid_ont_path(trimmed_ont):
            raise InvalidOnt("ONT path must match pattern shelf/slot/pon/ont/x (e.g. 1/1/3/2/1)")

        creds = self.resolve(overrides)
        command = OPTICS_COMMAND.format(ont_path=trimmed_ont)
        result = self._run(creds, command, self.settings.ssh_command_timeout_seconds, 'ont_optics')

        raw = result.stdout or result.stderr or ''
        rx_dbm = parse_rx_dbm(raw)
        reading = OpticsReading(
            ont_path=trimmed_ont,
            rx_dbm=rx_dbm,
            raw=raw,
            observed_at=datetime.now(timezone.utc),
            exit_code=result.exit_code if isinstance(result.exit_code, int) else None,
        )

        if rx_dbm is not None:
            optics_metrics.ont_rx_power.labels(ont_path=trimmed_ont).set(rx_dbm)
        else:
            optics_metrics.ont_rx_power_missing.labels(ont_path=trimmed_ont).inc()
            logging.warning(f"No dBm value found in optics output for ONT {trimmed_ont}")

        logging.info(
            f"Fetched ONT optics from OLT: protocol={self.protocol.value} host={creds.host} port={creds.port} "
            f"username={creds.username} ontPath={trimmed_ont} rxDbm={rx_dbm} exitCode={reading.exit_code}"
        )
        logging.debug(f"ONT {trimmed_ont} optics output: {raw!r}")

        return reading

    def cache_connection(self, params: ConnectionParameters):
        """Replace the remembered connection with a verified one"""
        self.cache.set(params)
