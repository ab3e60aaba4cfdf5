"""Forceful termination of a process together with its descendants."""

from __future__ import annotations

import logging

import psutil

logger = logging.getLogger(__name__)


def terminate_process_tree(
    pid: int,
    *,
    include_root: bool = True,
) -> list[int]:
    """Kill every descendant of ``pid`` (and ``pid`` itself unless excluded).

    Safe to call on a process that already exited. Returns the pids signalled.
    """

    try:
        root = psutil.Process(pid)
        targets = root.children(recursive=True)
    except psutil.NoSuchProcess:
        return []
    if include_root:
        targets.append(root)

    killed: list[int] = []
    for process in targets:
        try:
            process.kill()
        except psutil.NoSuchProcess:
            continue
        except psutil.AccessDenied:
            logger.warning("Not permitted to kill process %d", process.pid)
            continue
        killed.append(process.pid)

    if killed:
        logger.debug("Killed process tree rooted at %d: %s", pid, killed)
    return killed
