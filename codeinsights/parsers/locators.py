"""Virtual locator helpers for sources that pack many sessions into one file."""
from __future__ import annotations

VIRTUAL_LOCATOR_DELIMITER = "#"


def make_virtual_locator(physical_path: str, sub_session_id: str) -> str:
    return f"{physical_path}{VIRTUAL_LOCATOR_DELIMITER}{sub_session_id}"


def split_virtual_locator(locator: str) -> tuple[str, str] | None:
    """Split ``<path>#<id>`` at the last delimiter; None when there is no id."""
    physical_path, delimiter, sub_session_id = locator.rpartition(VIRTUAL_LOCATOR_DELIMITER)
    if not delimiter or not physical_path or not sub_session_id:
        return None
    return physical_path, sub_session_id


def physical_path_for(locator: str, virtual: bool) -> str:
    if not virtual:
        return locator
    parts = split_virtual_locator(locator)
    return parts[0] if parts else locator
