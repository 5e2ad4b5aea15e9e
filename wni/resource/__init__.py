"""
Resource tracking for created instances and security groups.
"""

from .tracker import (
    INSTALLER_INFO_FILE_NAME,
    Credentials,
    TrackedResources,
    append_info,
    read_info,
    remove_info,
    make_file_path,
    store_credential_data,
    delete_credential_data,
)

__all__ = [
    "INSTALLER_INFO_FILE_NAME",
    "Credentials",
    "TrackedResources",
    "append_info",
    "read_info",
    "remove_info",
    "make_file_path",
    "store_credential_data",
    "delete_credential_data",
]
