"""
External IP lookup for the operator's machine.
"""

import logging
import re
from typing import Optional

import requests

from .config import get_ip_lookup_url
from .errors import IPLookupError

logger = logging.getLogger(__name__)

_OCTET = r"(25[0-5]|2[0-4][0-9]|1[0-9][0-9]|[1-9]?[0-9])"
IPV4_PATTERN = re.compile(r"\.".join([_OCTET] * 4))


def find_ip(text: str) -> Optional[str]:
    """Return the first IPv4 address found in text, if any."""
    match = IPV4_PATTERN.search(text)
    return match.group(0) if match else None


def get_my_ip(url: Optional[str] = None, timeout: int = 10) -> str:
    """
    Get the external IP address of the operator's machine.

    Args:
        url: Lookup service URL, defaults to WNI_IP_LOOKUP_URL
        timeout: Request timeout in seconds

    Returns:
        str: IPv4 address without prefix length

    Raises:
        IPLookupError: If the service cannot be reached or returns no address
    """
    url = url or get_ip_lookup_url()
    try:
        response = requests.get(url, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise IPLookupError(f"failed to reach {url}: {e}") from e

    if response.status_code != 200:
        raise IPLookupError(f"{url} answered with status {response.status_code}")

    ip = find_ip(response.text)
    if not ip:
        raise IPLookupError(f"no IP address found in the response of {url}")

    logger.debug(f"External IP address is {ip}")
    return ip
