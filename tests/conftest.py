import socket
import threading
import time

import pytest

from config import Config

IAC = 255
DO = 253
WILL = 251
ECHO = 1
TERMINAL_TYPE = 24

OPTICS_OUTPUT = "ONT 1/1/3/2/1 optics\n  RX: -19.8 dBm\n  TX: -0.5 dBm\nOK"

CONFIG_ENV = (
    'PROTOCOL', 'OLT_HOST_DEFAULT', 'OLT_SSH_PORT', 'OLT_TELNET_PORT', 'OLT_USERNAME', 'OLT_PASSWORD',
    'TELNET_USERNAME_PROMPT', 'TELNET_PASSWORD_PROMPT', 'TELNET_SHELL_PROMPT', 'TELNET_LINE_TERMINATOR',
    'TELNET_LOGIN_TIMEOUT_MS', 'TELNET_COMMAND_TIMEOUT_MS', 'LOG_LEVEL', 'LOG_FILE', 'DEBUG_LOGGING',
    'METRICS_HOST', 'METRICS_PORT', 'COLLECTION_INTERVAL_SECONDS',
)


@pytest.fixture
def make_config(monkeypatch):
    """Build a Config from a clean environment plus the given variables"""
    def _make(**env):
        for name in CONFIG_ENV:
            monkeypatch.delenv(name, raising=False)
        for name, value in env.items():
            monkeypatch.setenv(name, str(value))
        return Config()
    return _make


class FakeTelnetOLT:
    """Scripted single-connection Telnet device listening on 127.0.0.1"""

    def __init__(self, output=OPTICS_OUTPUT, password='secret', username_prompt='login: ',
                 password_prompt='Password: ', shell_prompt='OLT-1# ', command_delay=0.0,
                 silent=False, negotiate=True, banner='Welcome'):
        self.output = output
        self.password = password
        self.username_prompt = username_prompt.encode()
        self.password_prompt = password_prompt.encode()
        self.shell_prompt = shell_prompt.encode()
        self.command_delay = command_delay
        self.silent = silent
        self.negotiate = negotiate
        self.banner = banner

        self.lines = []
        self.negotiation_replies = bytearray()
        self.closed_by_client = False
        self._buf = bytearray()

        self._server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._server.bind(('127.0.0.1', 0))
        self._server.listen(1)
        self.port = self._server.getsockname()[1]
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self):
        self._thread.start()
        return self

    def wait(self, timeout=5):
        self._thread.join(timeout)

    def stop(self):
        try:
            self._server.close()
        except OSError:
            pass

    def _read_line(self, conn):
        while True:
            # Pull complete option replies (IAC, verb, option) out of the stream
            iac = self._buf.find(bytes([IAC]))
            while iac >= 0 and len(self._buf) >= iac + 3:
                self.negotiation_replies += self._buf[iac:iac + 3]
                del self._buf[iac:iac + 3]
                iac = self._buf.find(bytes([IAC]))
            newline = self._buf.find(b'\n')
            if newline >= 0 and (iac < 0 or iac > newline):
                line = bytes(self._buf[:newline]).rstrip(b'\r')
                del self._buf[:newline + 1]
                self.lines.append(line.decode())
                return line
            chunk = conn.recv(1024)
            if not chunk:
                raise ConnectionError("client closed")
            self._buf += chunk

    def _wait_for_close(self, conn):
        try:
            while conn.recv(1024):
                pass
        except OSError:
            pass
        self.closed_by_client = True

    def _serve(self):
        try:
            conn, _ = self._server.accept()
        except OSError:
            return
        with conn:
            conn.settimeout(5)
            try:
                if self.silent:
                    self._wait_for_close(conn)
                    return
                if self.negotiate:
                    conn.sendall(bytes([IAC, WILL, ECHO, IAC, DO, TERMINAL_TYPE]))
                conn.sendall(b"\r\nNokia 7360 ISAM FX\r\n" + self.username_prompt)
                self._read_line(conn)
                conn.sendall(self.password_prompt)
                password = self._read_line(conn).decode()
                if password != self.password:
                    conn.sendall(b"\r\nLogin incorrect\r\n" + self.username_prompt)
                    self._wait_for_close(conn)
                    return
                conn.sendall(b"\r\n" + self.banner.encode() + b"\r\n" + self.shell_prompt)
                command = self._read_line(conn)
                if self.command_delay:
                    time.sleep(self.command_delay)
                body = self.output.replace('\n', '\r\n').encode()
                conn.sendall(command + b"\r\n" + body + b"\r\n" + self.shell_prompt)
                self._wait_for_close(conn)
            except OSError:
                self.closed_by_client = True
        self.stop()


@pytest.fixture
def fake_olt():
    servers = []

    def _start(**kwargs):
        server = FakeTelnetOLT(**kwargs).start()
        servers.append(server)
        return server

    yield _start
    for server in servers:
        server.stop()
