#!/usr/bin/env python3

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ProtocolKind(str, Enum):
    """Transport used to reach the OLT CLI"""

    SSH = 'ssh'
    TELNET = 'telnet'


def select_protocol(configured_value: Optional[str]) -> ProtocolKind:
    """Map the configured protocol name to a transport; anything but "ssh" means Telnet"""
    if isinstance(configured_value, str) and configured_value.strip().lower() == 'ssh':
        return ProtocolKind.SSH
    return ProtocolKind.TELNET


@dataclass(frozen=True)
class CommandExecutionResult:
    """Output of exactly one remote command run"""

    stdout: str
    stderr: str
    exit_code: Optional[int]
    signal: Optional[str] = None


class CompletionLatch:
    """First-to-fire-wins guard shared by a session and its timeout timer.

    Whoever calls fire() first owns the outcome of the operation; every later
    caller gets False and must discard its own result.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._fired = False

    def fire(self) -> bool:
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            return True

    @property
    def fired(self) -> bool:
        with self._lock:
            return self._fired
