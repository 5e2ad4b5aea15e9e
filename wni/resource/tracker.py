"""
On-disk tracker of the cloud resources created by the installer.

The tracker file (windows-node-installer.json) records the IDs of created
instances and security groups so that a later run can tear them down:

    {"InstanceIDs":["i-0e8e5e1766c3cc636"],"SecurityGroupIDs":["sg-005998c6a70973fab"]}

Every call re-reads the file, mutates the sets and rewrites it, so nothing
is cached between calls. Writes go through a temporary file that is renamed
over the target, which keeps a crash from leaving a half-written file.
There is no locking: one installer run is expected to own the file, and two
processes updating the same path concurrently can lose updates.
"""

import bisect
import contextlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from ..errors import (
    DuplicateEntryError,
    InvalidPathError,
    NotFoundError,
    TrackerIOError,
)

logger = logging.getLogger(__name__)

INSTALLER_INFO_FILE_NAME = "windows-node-installer.json"

# Owner read/write, everyone else read.
FILE_MODE = 0o644


@dataclass
class TrackedResources:
    """IDs of the instances and security groups created by the installer."""
    instance_ids: List[str] = field(default_factory=list)
    security_group_ids: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.instance_ids and not self.security_group_ids

    def to_json(self) -> str:
        """Serialize with the key names and compact layout of the tracker file."""
        return json.dumps(
            {
                "InstanceIDs": self.instance_ids,
                "SecurityGroupIDs": self.security_group_ids,
            },
            separators=(",", ":"),
        )


@dataclass
class Credentials:
    """Access information of a created Windows instance."""
    instance_id: str
    ip_address: str
    password: str
    username: str = "core"

    def to_text(self) -> str:
        """Render the RDP command line stored in the credential file."""
        return (
            f"xfreerdp /u:{self.username} /v:{self.ip_address} "
            f"/h:1080 /w:1920 /p:'{self.password}'\n"
        )


def append_info(instance_ids: Iterable[str], security_group_ids: Iterable[str], file_path: str) -> None:
    """
    Add instance and security group IDs to the tracker file.

    A missing file is treated as an empty tracker and is created.

    Args:
        instance_ids: Instance IDs to track
        security_group_ids: Security group IDs to track
        file_path: Path of the tracker file

    Raises:
        DuplicateEntryError: If an ID is already tracked; the file is left unchanged
        NotFoundError: If the existing file cannot be parsed
        TrackerIOError: If the file cannot be read or written
    """
    if os.path.exists(file_path):
        info = read_info(file_path)
    else:
        info = TrackedResources()

    info.instance_ids = _add_entries(info.instance_ids, instance_ids)
    info.security_group_ids = _add_entries(info.security_group_ids, security_group_ids)

    _write_info(info, file_path)
    logger.debug(f"Tracker file '{file_path}' now holds {len(info.instance_ids)} instances "
                 f"and {len(info.security_group_ids)} security groups")


def read_info(file_path: str) -> TrackedResources:
    """
    Read the tracker file.

    Args:
        file_path: Path of the tracker file

    Returns:
        TrackedResources: Tracked IDs, each list sorted

    Raises:
        NotFoundError: If the file does not exist or is not a tracker file
        TrackerIOError: If the file exists but cannot be read
    """
    try:
        with open(file_path, "r") as f:
            content = f.read()
    except FileNotFoundError as e:
        raise NotFoundError(f"tracker file '{file_path}' does not exist") from e
    except OSError as e:
        raise TrackerIOError("read", file_path, e) from e

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise NotFoundError(f"tracker file '{file_path}' is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise NotFoundError(f"tracker file '{file_path}' does not hold a JSON object")

    return TrackedResources(
        instance_ids=sorted(_string_list(data, "InstanceIDs", file_path)),
        security_group_ids=sorted(_string_list(data, "SecurityGroupIDs", file_path)),
    )


def remove_info(instance_ids: Iterable[str], security_group_ids: Iterable[str], file_path: str) -> None:
    """
    Remove instance and security group IDs from the tracker file.

    The file is deleted once nothing is left to track.

    Args:
        instance_ids: Instance IDs to forget
        security_group_ids: Security group IDs to forget
        file_path: Path of the tracker file

    Raises:
        NotFoundError: If the file does not exist, or an ID is not tracked; the file is left unchanged
        TrackerIOError: If the file cannot be read, written or deleted
    """
    info = read_info(file_path)

    info.instance_ids = _remove_entries(info.instance_ids, instance_ids)
    info.security_group_ids = _remove_entries(info.security_group_ids, security_group_ids)

    if info.is_empty():
        try:
            os.remove(file_path)
        except OSError as e:
            raise TrackerIOError("delete", file_path, e) from e
        logger.debug(f"Tracker file '{file_path}' is empty and was deleted")
        return

    _write_info(info, file_path)


def make_file_path(dir_path: str) -> str:
    """
    Build the tracker file path inside a directory.

    Args:
        dir_path: Existing directory, with or without a trailing separator

    Returns:
        str: Path of the tracker file

    Raises:
        InvalidPathError: If dir_path does not exist or is not a directory
    """
    if not dir_path or not os.path.exists(dir_path):
        raise InvalidPathError(f"directory path '{dir_path}' does not exist")
    if not os.path.isdir(dir_path):
        raise InvalidPathError(f"input directory path '{dir_path}' is not a directory")

    if dir_path.endswith(os.sep):
        return dir_path + INSTALLER_INFO_FILE_NAME
    return dir_path + os.sep + INSTALLER_INFO_FILE_NAME


def store_credential_data(file_path: str, file_data: str) -> None:
    """
    Store access information of an instance in its own file.

    Args:
        file_path: Path of the credential file
        file_data: Content to write

    Raises:
        TrackerIOError: If the file cannot be written
    """
    try:
        with open(file_path, "w") as f:
            f.write(file_data)
    except OSError as e:
        raise TrackerIOError("write", file_path, e) from e


def delete_credential_data(file_path: str) -> None:
    """Delete a credential file written by store_credential_data()."""
    try:
        os.remove(file_path)
    except OSError as e:
        raise TrackerIOError("delete", file_path, e) from e


def _add_entries(entries: List[str], new_entries: Iterable[str]) -> List[str]:
    """
    Insert new entries into a sorted list.

    Args:
        entries: Sorted entries
        new_entries: Entries to insert; empty strings are skipped

    Returns:
        New sorted list

    Raises:
        DuplicateEntryError: If an entry is already present
    """
    result = sorted(entries)
    for entry in new_entries:
        if not entry:
            continue
        index = bisect.bisect_left(result, entry)
        if index < len(result) and result[index] == entry:
            raise DuplicateEntryError(f"{entry} already exist")
        result.insert(index, entry)
    return result


def _remove_entries(entries: List[str], old_entries: Iterable[str]) -> List[str]:
    """Delete entries from a sorted list, failing on entries that are not there."""
    result = sorted(entries)
    for entry in old_entries:
        if not entry:
            continue
        index = bisect.bisect_left(result, entry)
        if index >= len(result) or result[index] != entry:
            raise NotFoundError(f"{entry} is not found")
        del result[index]
    return result


def _string_list(data: dict, key: str, file_path: str) -> List[str]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise NotFoundError(f"tracker file '{file_path}' has an invalid '{key}' entry")
    return list(value)


def _write_info(info: TrackedResources, file_path: str) -> None:
    directory = os.path.dirname(os.path.abspath(file_path))
    tmp_path: Optional[str] = None
    try:
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".wni-", suffix=".tmp")
        with os.fdopen(fd, "w") as f:
            f.write(info.to_json())
        os.chmod(tmp_path, FILE_MODE)
        os.replace(tmp_path, file_path)
    except OSError as e:
        if tmp_path is not None:
            with contextlib.suppress(OSError):
                os.remove(tmp_path)
        raise TrackerIOError("write", file_path, e) from e
