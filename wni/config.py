"""
Environment driven configuration.
"""

import os
from pathlib import Path

DEFAULT_IP_LOOKUP_URL = "https://checkip.amazonaws.com"
DEFAULT_AWS_REGION = "us-east-1"


def get_tracker_dir() -> Path:
    """
    Get the directory holding the tracker file.

    Returns:
        Path: Tracker directory (WNI_TRACKER_DIR, defaults to the current directory)
    """
    tracker_dir = os.environ.get("WNI_TRACKER_DIR", ".")
    return Path(tracker_dir)


def get_log_level() -> str:
    """Get the log level name from WNI_LOG_LEVEL."""
    return os.environ.get("WNI_LOG_LEVEL", "INFO").upper()


def get_ip_lookup_url() -> str:
    """Get the URL of the service that echoes the caller's external IP."""
    return os.environ.get("WNI_IP_LOOKUP_URL", DEFAULT_IP_LOOKUP_URL)


def get_aws_region() -> str:
    """
    Get the AWS region.

    Returns:
        str: AWS_REGION, then AWS_DEFAULT_REGION, then us-east-1
    """
    return (
        os.environ.get("AWS_REGION")
        or os.environ.get("AWS_DEFAULT_REGION")
        or DEFAULT_AWS_REGION
    )
