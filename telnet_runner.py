#!/usr/bin/env python3

import logging
import os
import re
import socket
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import pexpect
from pexpect.fdpexpect import fdspawn

from credentials import ConnectionParameters
from errors import (
    OltError,
    TelnetCommandError,
    TelnetConnectionError,
    TelnetParamError,
    TelnetTimeout,
)
from transport import CommandExecutionResult

DEFAULT_TELNET_PORT = 23
DEFAULT_USERNAME_PROMPT = 'login:'
DEFAULT_PASSWORD_PROMPT = 'Password:'
DEFAULT_SHELL_PROMPT = '>'

MAX_CAPTURE_BYTES = 1024 * 1024
RECV_CHUNK_SIZE = 4096
POLL_INTERVAL_SECONDS = 0.25

# Text a device prints when it refuses the username or password
LOGIN_FAILURE_MARKERS = ('incorrect', 'denied')

# Telnet command bytes (RFC 854)
IAC = 255
DONT = 254
DO = 253
WONT = 252
WILL = 251
SB = 250
SE = 240


def normalize_prompt(value, fallback: str) -> str:
    """Use the configured prompt unless it is empty or not a string"""
    if not value or not isinstance(value, str):
        return fallback
    return value


@dataclass(frozen=True)
class TelnetPrompts:
    """Literal prompts that drive the login dialogue"""

    username: str = DEFAULT_USERNAME_PROMPT
    password: str = DEFAULT_PASSWORD_PROMPT
    shell: str = DEFAULT_SHELL_PROMPT

    @classmethod
    def from_values(cls, username=None, password=None, shell=None) -> 'TelnetPrompts':
        return cls(
            username=normalize_prompt(username, DEFAULT_USERNAME_PROMPT),
            password=normalize_prompt(password, DEFAULT_PASSWORD_PROMPT),
            shell=normalize_prompt(shell, DEFAULT_SHELL_PROMPT),
        )


class TelnetState(Enum):
    CONNECTING = 'connecting'
    AUTHENTICATING_USERNAME = 'authenticating_username'
    AUTHENTICATING_PASSWORD = 'authenticating_password'
    SHELL_READY = 'shell_ready'
    EXECUTING = 'executing'
    COMPLETED = 'completed'
    FAILED = 'failed'


def strip_negotiation(data: bytes) -> Tuple[bytes, bytes, bytes]:
    """Split raw Telnet bytes into text, option refusals to send back, and an unfinished tail.

    Every DO is answered with WONT and every WILL with DONT; subnegotiation
    blocks and other commands are dropped. An escaped IAC IAC is kept as data.
    """
    text = bytearray()
    replies = bytearray()
    i = 0
    length = len(data)
    while i < length:
        byte = data[i]
        if byte != IAC:
            text.append(byte)
            i += 1
            continue
        if i + 1 >= length:
            break
        command = data[i + 1]
        if command == IAC:
            text.append(IAC)
            i += 2
        elif command in (DO, DONT, WILL, WONT):
            if i + 2 >= length:
                break
            option = data[i + 2]
            if command == DO:
                replies += bytes([IAC, WONT, option])
            elif command == WILL:
                replies += bytes([IAC, DONT, option])
            i += 3
        elif command == SB:
            end = data.find(bytes([IAC, SE]), i + 2)
            if end < 0:
                break
            i = end + 2
        else:
            i += 2
    return bytes(text), bytes(replies), data[i:]


class TelnetSpawn(fdspawn):
    """pexpect over a connected Telnet socket, with option negotiation filtered out"""

    def __init__(self, sock: socket.socket, timeout: float = 30):
        super().__init__(sock.fileno(), timeout=timeout, maxread=RECV_CHUNK_SIZE)
        self._pending = b''

    def read_nonblocking(self, size=1, timeout=-1):
        data = super().read_nonblocking(size, timeout)
        text, replies, self._pending = strip_negotiation(self._pending + data)
        if replies:
            os.write(self.child_fd, replies)
        return text


class TelnetSession:
    """One login/command/teardown cycle against an OLT Telnet CLI"""

    def __init__(
        self,
        params: ConnectionParameters,
        prompts: Optional[TelnetPrompts] = None,
        login_timeout: float = 8,
        command_timeout: float = 10,
        line_terminator: str = '\r\n',
    ):
        self.params = params
        self.prompts = prompts or TelnetPrompts()
        self.login_timeout = login_timeout
        self.command_timeout = command_timeout
        self.line_terminator = line_terminator
        self.port = params.port if isinstance(params.port, int) and params.port > 0 else DEFAULT_TELNET_PORT
        self.state = TelnetState.CONNECTING
        self._sock = None
        self._child = None
        self._shell_reached = False

    def run(self, command: str) -> CommandExecutionResult:
        login_deadline = time.monotonic() + self.login_timeout
        try:
            self._connect(login_deadline)
            self._login(login_deadline)
            output = self._execute(command)
            self.state = TelnetState.COMPLETED
            return CommandExecutionResult(stdout=output, stderr='', exit_code=0, signal=None)
        except OltError as e:
            self._fail(e)
            raise
        except (pexpect.ExceptionPexpect, OSError) as e:
            if self._shell_reached:
                error = TelnetCommandError(f"Telnet command failed on {self.params.host}:{self.port}: {e}")
            else:
                error = TelnetConnectionError(f"Telnet connection to {self.params.host}:{self.port} failed: {e}")
            self._fail(error)
            raise error from e
        finally:
            self._teardown()

    def _connect(self, deadline: float):
        logging.debug(f"Opening Telnet connection to OLT {self.params.host}:{self.port} as {self.params.username}")
        remaining = max(deadline - time.monotonic(), 0.001)
        try:
            self._sock = socket.create_connection((self.params.host, self.port), timeout=remaining)
        except OSError as e:
            raise TelnetConnectionError(f"Telnet connection to {self.params.host}:{self.port} failed: {e}")
        self._sock.setblocking(True)
        self._child = TelnetSpawn(self._sock, timeout=self.login_timeout)

    def _send(self, text: str):
        self._child.send((text + self.line_terminator).encode('utf-8'))

    def _login(self, deadline: float):
        self.state = TelnetState.AUTHENTICATING_USERNAME
        login_patterns = [
            self.prompts.username.encode('utf-8'),
            self.prompts.password.encode('utf-8'),
            self.prompts.shell.encode('utf-8'),
            pexpect.EOF,
            pexpect.TIMEOUT,
        ]
        # Once the password is out, banners like "Last login:" may echo the username prompt text
        authenticating_patterns = [
            self.prompts.shell.encode('utf-8'),
            pexpect.EOF,
            pexpect.TIMEOUT,
        ] + [marker.encode('utf-8') for marker in LOGIN_FAILURE_MARKERS]

        while self.state is TelnetState.AUTHENTICATING_USERNAME:
            i = self._child.expect_exact(login_patterns, timeout=self._remaining(deadline))
            if i == 0:  # username prompt
                logging.debug("Sending username...")
                self._send(self.params.username)
            elif i == 1:  # password prompt
                logging.debug("Sending password...")
                self._send(self.params.password)
                self.state = TelnetState.AUTHENTICATING_PASSWORD
            elif i == 2:  # shell prompt without authentication
                self.state = TelnetState.SHELL_READY
            elif i == 3:
                raise TelnetConnectionError(f"Telnet connection to {self.params.host}:{self.port} closed during login")
            else:
                raise self._login_timed_out()

        while self.state is TelnetState.AUTHENTICATING_PASSWORD:
            i = self._child.expect_exact(authenticating_patterns, timeout=self._remaining(deadline))
            if i == 0:
                self.state = TelnetState.SHELL_READY
            elif i == 1:
                raise TelnetConnectionError(f"Telnet connection to {self.params.host}:{self.port} closed during login")
            elif i == 2:
                raise self._login_timed_out()
            else:
                raise TelnetConnectionError(f"Telnet login to {self.params.host}:{self.port} was rejected")

        self._shell_reached = True
        logging.debug(f"Telnet connection established to {self.params.host}:{self.port}; executing command on OLT")

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise self._login_timed_out()
        return remaining

    def _login_timed_out(self) -> TelnetConnectionError:
        return TelnetConnectionError(f"Telnet login to {self.params.host}:{self.port} timed out after {self.login_timeout}s")

    def _execute(self, command: str) -> str:
        self.state = TelnetState.EXECUTING
        self._send(command)

        deadline = time.monotonic() + self.command_timeout
        patterns = [self.prompts.shell.encode('utf-8'), pexpect.EOF, pexpect.TIMEOUT]
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TelnetTimeout(f"Telnet command timed out after {self.command_timeout}s")

            i = self._child.expect_exact(patterns, timeout=min(remaining, POLL_INTERVAL_SECONDS))
            if i == 0:
                break
            if i == 1:
                raise TelnetCommandError("Telnet connection closed before the shell prompt returned")
            if len(self._child.before) > MAX_CAPTURE_BYTES:
                raise TelnetCommandError(f"Telnet command output exceeded {MAX_CAPTURE_BYTES} bytes")

        full_output = self._child.before.decode('utf-8', 'ignore')
        output = re.sub(r'\r+\n', '\n', full_output)
        # Remove the echoed command from the beginning of the output
        cmd_pattern = r'^\s*' + re.escape(command) + r'[ \t]*\n'
        output = re.sub(cmd_pattern, '', output, count=1)
        # The text after the last line break belongs to the prompt line (e.g. "OLT-1" before "#")
        output = output.rpartition('\n')[0]
        output = output.lstrip('\n').rstrip('\n')

        logging.debug(f"Telnet command executed on {self.params.host}:{self.port}: {command[:80]!r} ({len(output)} chars)")
        return output

    def _fail(self, error: OltError):
        failed_in = self.state
        self.state = TelnetState.FAILED
        logging.error(
            f"Telnet error while communicating with OLT {self.params.host}:{self.port} as {self.params.username} "
            f"({error.kind.value} in state {failed_in.value}): {error.message}"
        )

    def _teardown(self):
        if self._sock is None:
            return
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError as e:
            logging.debug(f"Ignoring Telnet shutdown error: {e}")
        try:
            self._sock.close()
        except OSError as e:
            logging.debug(f"Ignoring Telnet close error: {e}")
        self._sock = None
        self._child = None


def run_telnet_command(
    params: ConnectionParameters,
    command: str,
    prompts: Optional[TelnetPrompts] = None,
    login_timeout: float = 8,
    command_timeout: float = 10,
    line_terminator: str = '\r\n',
) -> CommandExecutionResult:
    """Log in over Telnet, run one command, and return its output.

    Telnet has no separate error stream or remote exit status: the captured
    text is returned as stdout with exit code 0, and callers infer failures
    from the text itself.
    """
    if not params.host or not params.username or not params.password or not command:
        raise TelnetParamError("Missing required Telnet parameters: host, username, password, command")

    session = TelnetSession(
        params,
        prompts=prompts,
        login_timeout=login_timeout,
        command_timeout=command_timeout,
        line_terminator=line_terminator,
    )
    return session.run(command)
