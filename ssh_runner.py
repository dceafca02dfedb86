#!/usr/bin/env python3

import logging
import socket
import threading
import time

import paramiko

from credentials import ConnectionParameters
from errors import SshConnectionError, SshExecError, SshParamError, SshTimeout
from transport import CommandExecutionResult, CompletionLatch

RECV_CHUNK_SIZE = 4096
POLL_INTERVAL_SECONDS = 0.05


def _drain(channel, stdout_chunks, stderr_chunks) -> bool:
    """Move whatever the channel has buffered into the chunk lists"""
    received = False
    if channel.recv_ready():
        stdout_chunks.append(channel.recv(RECV_CHUNK_SIZE))
        received = True
    if channel.recv_stderr_ready():
        stderr_chunks.append(channel.recv_stderr(RECV_CHUNK_SIZE))
        received = True
    return received


def run_ssh_command(params: ConnectionParameters, command: str, timeout: float = 10) -> CommandExecutionResult:
    """Execute a single command over SSH and return its stdout, stderr and exit status.

    The timer armed here and the session itself race through one
    CompletionLatch; when the timer wins the connection is torn down and
    SshTimeout is raised, whatever the device sends afterwards.
    """
    if not params.host or not params.username or not params.password or not command:
        raise SshParamError("Missing required SSH parameters: host, username, password, command")

    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    latch = CompletionLatch()

    def _on_timeout():
        if latch.fire():
            logging.error(f"SSH command timed out after {timeout}s on {params.host}:{params.port} as {params.username}")
            client.close()

    def _timed_out() -> SshTimeout:
        return SshTimeout(f"SSH command timed out after {timeout}s")

    timer = threading.Timer(timeout, _on_timeout)
    timer.daemon = True
    timer.start()

    try:
        # Connect and authenticate
        try:
            client.connect(
                params.host,
                port=params.port,
                username=params.username,
                password=params.password,
                timeout=timeout,
                banner_timeout=timeout,
                auth_timeout=timeout,
                allow_agent=False,
                look_for_keys=False,
            )
        except socket.timeout:
            latch.fire()
            raise _timed_out()
        except (paramiko.SSHException, OSError) as e:
            if not latch.fire():
                raise _timed_out()
            logging.error(f"SSH connection error on {params.host}:{params.port} as {params.username}: {e}")
            raise SshConnectionError(f"SSH connection to {params.host}:{params.port} failed: {e}")

        logging.debug(f"SSH connection ready on {params.host}:{params.port}; executing command on OLT")

        # Dispatch the command on a fresh channel
        try:
            transport = client.get_transport()
            if transport is None:
                raise paramiko.SSHException("transport is closed")
            channel = transport.open_session(timeout=timeout)
            channel.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            if not latch.fire():
                raise _timed_out()
            logging.error(f"SSH exec error on {params.host}:{params.port}: {e}")
            raise SshExecError(f"SSH command could not be dispatched: {e}")

        # Collect both streams until the remote side reports its exit status
        stdout_chunks = []
        stderr_chunks = []
        try:
            while not latch.fired:
                received = _drain(channel, stdout_chunks, stderr_chunks)
                if channel.exit_status_ready() and not channel.recv_ready() and not channel.recv_stderr_ready():
                    break
                if not received:
                    time.sleep(POLL_INTERVAL_SECONDS)
        except (paramiko.SSHException, OSError) as e:
            if not latch.fire():
                raise _timed_out()
            logging.error(f"SSH connection lost on {params.host}:{params.port} while reading output: {e}")
            raise SshConnectionError(f"SSH connection to {params.host}:{params.port} was lost: {e}")

        if not latch.fire():
            raise _timed_out()

        status = channel.recv_exit_status()
        result = CommandExecutionResult(
            stdout=b''.join(stdout_chunks).decode('utf-8', 'ignore'),
            stderr=b''.join(stderr_chunks).decode('utf-8', 'ignore'),
            exit_code=status if status >= 0 else None,
            signal=None,
        )
        logging.debug(f"SSH command finished on {params.host}:{params.port} with exit code {result.exit_code}")
        return result

    finally:
        timer.cancel()
        client.close()
