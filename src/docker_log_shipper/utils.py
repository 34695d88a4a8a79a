"""Utility functions shared by the CLI and the services"""

import math
import re
from typing import List, Tuple
from urllib.parse import urlparse

from docker_log_shipper.core.exceptions import ConfigurationError


def format_size(size_bytes: float) -> str:
    """Format bytes to human-readable size, e.g. 10240 -> '10KB', 1536 -> '1.5KB'"""
    if not math.isfinite(size_bytes):
        raise ValueError(f"not a finite size: {size_bytes}")
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if abs(size_bytes) < 1024.0:
            return f"{_trim_number(size_bytes)}{unit}"
        size_bytes /= 1024.0
    return f"{_trim_number(size_bytes)}PB"


def _trim_number(value: float) -> str:
    text = f"{value:.2f}".rstrip('0').rstrip('.')
    return text or '0'


def truncate_id(id_str: str, length: int = 12) -> str:
    """Truncate ID to specified length"""
    if not id_str:
        return '-'
    return id_str[:length]


def parse_hosts(text: str) -> List[str]:
    """
    Split a host list given on the command line or piped on stdin.

    Hosts may be separated by commas, spaces or newlines. Empty entries
    and repeats are dropped, first occurrence order is kept.
    """
    hosts: List[str] = []
    for item in re.split(r'[,\s]+', text or ''):
        if item and item not in hosts:
            hosts.append(item)
    return hosts


def parse_address(address: str, default_port: int) -> Tuple[str, int]:
    """
    Parse ``host``, ``host:port``, ``[v6]:port`` or ``tcp://host:port``.

    Raises:
        ConfigurationError: If the address is empty or the port is invalid
    """
    address = (address or '').strip()
    if '://' in address:
        address = urlparse(address).netloc
    if not address:
        raise ConfigurationError("Empty host address")

    if address.startswith('['):
        host, _, rest = address[1:].partition(']')
        port_str = rest[1:] if rest.startswith(':') else ''
    elif address.count(':') == 1:
        host, port_str = address.split(':')
    else:
        host, port_str = address, ''

    if not host:
        raise ConfigurationError(f"Missing host name in address: {address}")
    if not port_str:
        return host, default_port

    try:
        port = int(port_str)
    except ValueError:
        raise ConfigurationError(f"Invalid port in address: {address}")
    if not 0 < port < 65536:
        raise ConfigurationError(f"Port out of range in address: {address}")
    return host, port
