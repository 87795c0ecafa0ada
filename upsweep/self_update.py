# upsweep/self_update.py
from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, Optional
import logging
import os
from importlib import metadata

from .config import Settings
from .executor import Executor
from .orchestrator import shell_action
from .session import NO_SELF_UPDATE
from .terminal import Terminal

log = logging.getLogger("upsweep.self_update")


class UpdateStatus(str, Enum):
    UPDATED = "updated"            # a newer version is installed; respawn
    UP_TO_DATE = "up_to_date"
    FAILED = "failed"
    SKIPPED = "skipped"


def installed_version(dist: str = "upsweep") -> str:
    """Version recorded in the installed distribution metadata, read fresh from disk."""
    try:
        return metadata.version(dist)
    except metadata.PackageNotFoundError:
        return ""


def self_update(
    settings: Settings,
    executor: Executor,
    terminal: Optional[Terminal] = None,
    version_of: Callable[[], str] = installed_version,
    environ: Optional[Dict[str, str]] = None,
) -> UpdateStatus:
    environ = os.environ if environ is None else environ
    if not settings.self_update_command:
        return UpdateStatus.SKIPPED
    if settings.dry_run or environ.get(NO_SELF_UPDATE):
        log.debug("Self-update skipped")
        return UpdateStatus.SKIPPED

    before = version_of()
    if terminal is not None:
        terminal.separator("Self update")
    result = executor.execute(shell_action(settings.self_update_command))
    if not result.ok:
        log.warning("Self-update failed: %s", result.reason())
        if terminal is not None:
            terminal.warning(f"Self-update failed: {result.reason()}")
        return UpdateStatus.FAILED

    after = version_of()
    if after and after != before:
        if terminal is not None:
            terminal.info(f"upsweep upgraded to {after}")
        return UpdateStatus.UPDATED
    if terminal is not None:
        terminal.plain("upsweep is up-to-date")
    return UpdateStatus.UP_TO_DATE
