#!/usr/bin/env python3

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from errors import MissingCredentials
from transport import ProtocolKind


@dataclass(frozen=True)
class ConnectionParameters:
    """Concrete credentials for one OLT session (password kept out of repr)"""

    host: str
    port: int
    username: str
    password: str = field(repr=False)

    def redacted(self) -> Dict[str, Any]:
        """Connection metadata that is safe to log or return"""
        return {'host': self.host, 'port': self.port, 'username': self.username}


@dataclass(frozen=True)
class ConnectionDefaults:
    """Environment-level fallbacks for credential resolution"""

    host: str = ''
    ssh_port: int = 22
    telnet_port: int = 23
    username: str = ''
    password: str = field(default='', repr=False)

    @classmethod
    def from_config(cls, settings) -> 'ConnectionDefaults':
        return cls(
            host=settings.olt_host_default,
            ssh_port=settings.olt_ssh_port,
            telnet_port=settings.olt_telnet_port,
            username=settings.olt_username,
            password=settings.olt_password,
        )

    def port_for(self, protocol: ProtocolKind) -> int:
        return self.ssh_port if protocol is ProtocolKind.SSH else self.telnet_port


class ConnectionCache:
    """Single slot holding the most recently verified connection parameters.

    The slot is swapped as a whole under a lock, so readers never observe a
    mix of two credential sets.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._params: Optional[ConnectionParameters] = None

    def get(self) -> Optional[ConnectionParameters]:
        with self._lock:
            return self._params

    def set(self, params: ConnectionParameters):
        with self._lock:
            self._params = params


def _coerce_port(value: Any) -> Optional[int]:
    """Return a usable port number, or None when the value cannot serve as one"""
    if value is None or isinstance(value, bool):
        return None
    try:
        port = int(value)
    except (TypeError, ValueError):
        return None
    return port if port > 0 else None


def _first_present(*values):
    for value in values:
        if value:
            return value
    return None


def resolve_credentials(
    overrides: Optional[Mapping[str, Any]],
    cache: ConnectionCache,
    defaults: ConnectionDefaults,
    protocol: ProtocolKind,
) -> ConnectionParameters:
    """Merge request overrides, the cached connection and defaults field by field.

    Each of host, port, username and password is taken from the first source
    that provides it: request override, then cache, then defaults. The default
    port depends on the active protocol.

    Raises:
        MissingCredentials: host, username or password is still empty after merging
    """
    overrides = overrides or {}
    cached = cache.get()

    host = _first_present(overrides.get('host'), cached.host if cached else None, defaults.host)
    username = _first_present(overrides.get('username'), cached.username if cached else None, defaults.username)
    password = _first_present(overrides.get('password'), cached.password if cached else None, defaults.password)
    port = _first_present(
        _coerce_port(overrides.get('port')),
        _coerce_port(cached.port) if cached else None,
        _coerce_port(defaults.port_for(protocol)),
    )

    if not host or not username or not password:
        raise MissingCredentials(
            'Missing OLT credentials (host, username, password). '
            'Provide them in the request or via environment.'
        )

    if cached:
        from_cache = [
            name for name in ('host', 'username', 'password')
            if not overrides.get(name) and getattr(cached, name)
        ]
        if from_cache:
            logging.debug(f"Using cached OLT connection for {', '.join(from_cache)}")

    return ConnectionParameters(
        host=str(host),
        port=port if port else defaults.port_for(protocol),
        username=str(username),
        password=str(password),
    )
