"""Reverse DNS enrichment for newly seen firewalls.

Lookups are the only network access an ingest performs. Each attempt has
a one-second deadline and two attempts are made; failures degrade to a
recorded status instead of failing the ingest.
"""
import ipaddress
import logging
import socket
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from ..utils.retry import with_retry

logger = logging.getLogger(__name__)

LOOKUP_ATTEMPTS = 2
LOOKUP_TIMEOUT = 1.0

STATUS_OK = "ok"
STATUS_NOT_FOUND = "not_found"
STATUS_TIMEOUT = "timeout"
STATUS_ERROR = "error"


class RDNSNotFound(Exception):
    """The address has no PTR record."""
    pass


class RDNSLookupError(Exception):
    """Any other resolver failure."""
    pass


LookupFunc = Callable[[str], str]


@dataclass
class ReverseDNS:
    ip: str
    ptr_name: str
    status: str
    looked_up_at_utc: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


def default_lookup(ip: str) -> str:
    """Resolve a PTR name with the system resolver."""
    try:
        name, _, _ = socket.gethostbyaddr(ip)
    except socket.herror as e:
        if e.errno in (1, 4):  # HOST_NOT_FOUND, NO_DATA
            raise RDNSNotFound(ip) from e
        raise RDNSLookupError(str(e)) from e
    except socket.gaierror as e:
        raise RDNSLookupError(str(e)) from e
    if not name:
        raise RDNSNotFound(ip)
    return name.rstrip(".")


def _lookup_with_deadline(lookup: LookupFunc, ip: str, timeout: float) -> str:
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="rdns")
    try:
        future = pool.submit(lookup, ip)
        try:
            ptr = future.result(timeout=timeout)
        except FutureTimeoutError as e:
            raise TimeoutError(f"reverse lookup of {ip} timed out") from e
        except (RDNSNotFound, TimeoutError):
            raise
        except Exception as e:
            raise RDNSLookupError(str(e)) from e
    finally:
        # A hung resolver thread is abandoned, not joined
        pool.shutdown(wait=False)

    if not ptr:
        raise RDNSLookupError(f"empty PTR name for {ip}")
    return ptr


@with_retry(
    max_attempts=LOOKUP_ATTEMPTS,
    min_wait=0,
    max_wait=0.2,
    exceptions=(TimeoutError, RDNSLookupError),
)
def _lookup_with_retry(lookup: LookupFunc, ip: str, timeout: float) -> str:
    return _lookup_with_deadline(lookup, ip, timeout)


def is_ipv4(value: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(value.strip()), ipaddress.IPv4Address)
    except ValueError:
        return False


def maybe_lookup(
    enabled: bool,
    is_new_device: bool,
    mgmt_ip: str,
    now: datetime,
    lookup: Optional[LookupFunc] = default_lookup,
    timeout: float = LOOKUP_TIMEOUT,
) -> Optional[ReverseDNS]:
    """
    Look up the PTR name of a new device's management address.

    Returns:
        ReverseDNS with status ok/not_found/timeout/error, or None when the
        lookup does not apply (disabled, known device, no IPv4 address)
    """
    if not enabled or not is_new_device or lookup is None or not is_ipv4(mgmt_ip or ""):
        return None

    ptr = ""
    try:
        ptr = _lookup_with_retry(lookup, mgmt_ip, timeout)
        status = STATUS_OK
    except RDNSNotFound:
        status = STATUS_NOT_FOUND
    except TimeoutError:
        status = STATUS_TIMEOUT
    except RDNSLookupError as e:
        logger.debug(f"Reverse lookup of {mgmt_ip} failed: {e}")
        status = STATUS_ERROR

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return ReverseDNS(
        ip=mgmt_ip,
        ptr_name=ptr,
        status=status,
        looked_up_at_utc=now.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    )
