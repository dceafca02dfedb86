#!/usr/bin/env python3

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    """Tags for every failure the OLT command layer reports"""

    MISSING_CREDENTIALS = 'MISSING_CREDENTIALS'
    INVALID_ONT = 'INVALID_ONT'
    SSH_PARAM_ERROR = 'SSH_PARAM_ERROR'
    SSH_CONNECTION_ERROR = 'SSH_CONNECTION_ERROR'
    SSH_EXEC_ERROR = 'SSH_EXEC_ERROR'
    SSH_TIMEOUT = 'SSH_TIMEOUT'
    TELNET_PARAM_ERROR = 'TELNET_PARAM_ERROR'
    TELNET_CONNECTION_ERROR = 'TELNET_CONNECTION_ERROR'
    TELNET_TIMEOUT = 'TELNET_TIMEOUT'
    TELNET_COMMAND_ERROR = 'TELNET_COMMAND_ERROR'


class OltError(Exception):
    """Base class for OLT command failures"""

    kind: ErrorKind = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Client-class errors: the caller has to supply better input
class MissingCredentials(OltError):
    kind = ErrorKind.MISSING_CREDENTIALS


class InvalidOnt(OltError):
    kind = ErrorKind.INVALID_ONT


class SshParamError(OltError):
    kind = ErrorKind.SSH_PARAM_ERROR


class TelnetParamError(OltError):
    kind = ErrorKind.TELNET_PARAM_ERROR


# Transport-class errors: the OLT or the path to it failed
class SshConnectionError(OltError):
    kind = ErrorKind.SSH_CONNECTION_ERROR


class SshExecError(OltError):
    kind = ErrorKind.SSH_EXEC_ERROR


class SshTimeout(OltError):
    kind = ErrorKind.SSH_TIMEOUT


class TelnetConnectionError(OltError):
    kind = ErrorKind.TELNET_CONNECTION_ERROR


class TelnetTimeout(OltError):
    kind = ErrorKind.TELNET_TIMEOUT


class TelnetCommandError(OltError):
    kind = ErrorKind.TELNET_COMMAND_ERROR


# Caller-facing status per error kind
ERROR_STATUS = {
    ErrorKind.MISSING_CREDENTIALS: 400,
    ErrorKind.INVALID_ONT: 400,
    ErrorKind.SSH_PARAM_ERROR: 400,
    ErrorKind.TELNET_PARAM_ERROR: 400,
    ErrorKind.SSH_CONNECTION_ERROR: 502,
    ErrorKind.SSH_EXEC_ERROR: 502,
    ErrorKind.SSH_TIMEOUT: 504,
    ErrorKind.TELNET_CONNECTION_ERROR: 502,
    ErrorKind.TELNET_TIMEOUT: 504,
    ErrorKind.TELNET_COMMAND_ERROR: 502,
}

INTERNAL_ERROR_STATUS = 500


def status_for(error: Exception) -> int:
    """Map an exception to the status reported to the caller"""
    if isinstance(error, OltError):
        return ERROR_STATUS.get(error.kind, INTERNAL_ERROR_STATUS)
    return INTERNAL_ERROR_STATUS


def is_client_error(error: Exception) -> bool:
    return 400 <= status_for(error) < 500


def error_payload(error: Exception) -> Dict[str, Any]:
    """Build the structured error body handed back to the caller"""
    if isinstance(error, OltError):
        code = error.kind.value
        message = error.message
    else:
        code = 'INTERNAL_SERVER_ERROR'
        message = str(error) or 'Unexpected error'
    return {'error': {'code': code, 'message': message}}
