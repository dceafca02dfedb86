#!/usr/bin/env python3

import os
import logging
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(os.getenv('OLT_ENV_PATH') or os.path.join(os.getcwd(), '.env'))

VALID_PROTOCOLS = ('telnet', 'ssh')
VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def _int_env(name: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to the default"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        logging.warning(f"{name}={raw!r} is not an integer, using {default}")
        return default
    return value if value > 0 else default


def _bool_env(name: str, default: bool) -> bool:
    return os.getenv(name, 'true' if default else 'false').strip().lower() == 'true'


def _unescape(value: str) -> str:
    return value.replace('\\r', '\r').replace('\\n', '\n')


class Config:
    """Configuration management for the OLT optics service"""

    def __init__(self):
        # Transport selection: "telnet" (default) or "ssh"
        self.protocol = os.getenv('PROTOCOL', 'telnet').strip().lower()

        # OLT connection defaults; any of these may be overridden per request
        self.olt_host_default = os.getenv('OLT_HOST_DEFAULT', '')
        self.olt_ssh_port = _int_env('OLT_SSH_PORT', 22)
        self.olt_telnet_port = _int_env('OLT_TELNET_PORT', 23)
        self.olt_username = os.getenv('OLT_USERNAME', '')
        self.olt_password = os.getenv('OLT_PASSWORD', '')

        # Telnet dialogue
        self.telnet_username_prompt = os.getenv('TELNET_USERNAME_PROMPT') or 'login:'
        self.telnet_password_prompt = os.getenv('TELNET_PASSWORD_PROMPT') or 'Password:'
        self.telnet_shell_prompt = os.getenv('TELNET_SHELL_PROMPT') or '#'
        self.telnet_line_terminator = _unescape(os.getenv('TELNET_LINE_TERMINATOR') or '\\r\\n')
        self.telnet_login_timeout_ms = _int_env('TELNET_LOGIN_TIMEOUT_MS', 8000)
        self.telnet_command_timeout_ms = _int_env('TELNET_COMMAND_TIMEOUT_MS', 10000)

        # SSH timeouts - Hardcoded values
        self.ssh_test_timeout_seconds = 8
        self.ssh_command_timeout_seconds = 10

        # Logging Configuration
        self.log_level_name = os.getenv('LOG_LEVEL', 'INFO').strip().upper()  # keeping INFO as safe default
        self.log_level = getattr(logging, self.log_level_name, logging.INFO)
        self.log_file = os.getenv('LOG_FILE') or None
        self.log_max_bytes = _int_env('LOG_MAX_BYTES', 1024 * 1024)
        self.log_backup_count = _int_env('LOG_BACKUP_COUNT', 5)
        self.debug_logging = _bool_env('DEBUG_LOGGING', False)

        # Prometheus exporter and watch loop
        self.metrics_host = os.getenv('METRICS_HOST', '0.0.0.0')
        self.metrics_port = _int_env('METRICS_PORT', 9105)
        self.collection_interval_seconds = _int_env('COLLECTION_INTERVAL_SECONDS', 60)

    @property
    def telnet_login_timeout_seconds(self) -> float:
        return self.telnet_login_timeout_ms / 1000.0

    @property
    def telnet_command_timeout_seconds(self) -> float:
        return self.telnet_command_timeout_ms / 1000.0

    def validate(self) -> List[str]:
        """Return configuration problems.

        Missing OLT credentials are not a problem here because callers may
        supply them per request.
        """
        problems = []

        if not self.olt_host_default:
            problems.append("OLT_HOST_DEFAULT is empty; connections will fail without a host.")

        if self.protocol not in VALID_PROTOCOLS:
            problems.append(f'PROTOCOL "{self.protocol}" is not recognized; supported values are "telnet" and "ssh".')

        if self.olt_ssh_port <= 0 or self.olt_ssh_port > 65535:
            problems.append("OLT_SSH_PORT must be a valid TCP port.")

        if self.olt_telnet_port <= 0 or self.olt_telnet_port > 65535:
            problems.append("OLT_TELNET_PORT must be a valid TCP port.")

        if self.log_level_name not in VALID_LOG_LEVELS:
            problems.append(f'LOG_LEVEL "{self.log_level_name}" is not a recognized level.')

        return problems

    def log_configuration(self):
        """Log current configuration (without sensitive data)"""
        logging.info("=== Configuration ===")
        logging.info(f"Protocol: {self.protocol}")
        logging.info(f"Default OLT Host: {self.olt_host_default or '(unset)'}")
        logging.info(f"OLT SSH Port: {self.olt_ssh_port}")
        logging.info(f"OLT Telnet Port: {self.olt_telnet_port}")
        logging.info(f"Default OLT User: {self.olt_username or '(unset)'}")
        logging.info(f"Default OLT Password: {'(set)' if self.olt_password else '(unset)'}")
        logging.info(f"Telnet Prompts: {self.telnet_username_prompt!r} / {self.telnet_password_prompt!r} / {self.telnet_shell_prompt!r}")
        logging.info(f"Telnet Login Timeout: {self.telnet_login_timeout_ms}ms")
        logging.info(f"Telnet Command Timeout: {self.telnet_command_timeout_ms}ms")
        logging.info(f"Metrics Endpoint: {self.metrics_host}:{self.metrics_port}")
        logging.info(f"Collection Interval: {self.collection_interval_seconds}s")
        logging.info("=====================")

        for problem in self.validate():
            logging.warning(f"Configuration warning: {problem}")


# Global configuration instance
config = Config()
