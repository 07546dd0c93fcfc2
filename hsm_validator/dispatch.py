"""Send a single job to the HSM module and collect its raw response."""
from __future__ import annotations

import enum
import logging
import socket
from dataclasses import dataclass
from typing import Optional

from .codec import encode_int32
from .errors import ConnectFailed, ReadFailed, TransportTimeout, WriteFailed

logger = logging.getLogger(__name__)

_RECV_CHUNK = 65536


class Job(enum.IntEnum):
    LOAD_KEY = 0
    GENERATE_KEY = 1
    SIGN_VOTE = 2
    SIGN_PROPOSAL = 3
    SIGN_HEARTBEAT = 4


@dataclass(frozen=True)
class ModuleEndpoint:
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


def build_frame(job: int, payload: bytes) -> bytes:
    # The outer length is a plain int32, not a padded byte string.
    body = encode_int32(int(job)) + payload
    return encode_int32(len(body)) + body


def _job_name(job: int) -> str:
    try:
        return Job(job).name
    except ValueError:
        return str(job)


def _connect(endpoint: ModuleEndpoint, timeout_seconds: Optional[float]) -> socket.socket:
    try:
        return socket.create_connection((endpoint.host, endpoint.port), timeout=timeout_seconds)
    except socket.timeout as exc:
        raise TransportTimeout(f"timed out connecting to HSM module at {endpoint}") from exc
    except OSError as exc:
        raise ConnectFailed(f"failed to connect to HSM module at {endpoint}: {exc}") from exc


def _read_to_end(sock: socket.socket, endpoint: ModuleEndpoint) -> bytes:
    chunks: list[bytes] = []
    while True:
        try:
            part = sock.recv(_RECV_CHUNK)
        except socket.timeout as exc:
            raise TransportTimeout(f"timed out reading response from HSM module at {endpoint}") from exc
        except OSError as exc:
            raise ReadFailed(f"failed to read response from HSM module at {endpoint}: {exc}") from exc
        if not part:
            break
        chunks.append(part)
    return b"".join(chunks)


def send_job(
    job: int,
    payload: bytes,
    endpoint: ModuleEndpoint,
    *,
    timeout_seconds: Optional[float] = None,
) -> bytes:
    """Frame ``payload`` for ``job``, send it on a fresh connection and return the raw response.

    Every call opens and closes its own connection. Failures are raised as
    ``TransportError`` subclasses and are never retried here.
    """
    frame = build_frame(job, payload)
    name = _job_name(job)
    logger.debug("Dispatching job %s to %s (%d bytes)", name, endpoint, len(frame))

    with _connect(endpoint, timeout_seconds) as sock:
        try:
            sock.sendall(frame)
        except socket.timeout as exc:
            raise TransportTimeout(f"timed out sending job {name} to HSM module at {endpoint}") from exc
        except OSError as exc:
            raise WriteFailed(f"failed to send job {name} to HSM module at {endpoint}: {exc}") from exc
        response = _read_to_end(sock, endpoint)

    logger.debug("Job %s returned %d bytes", name, len(response))
    return response
