"""Process-tree termination.

POSIX children are started in their own session, so the whole tree shares
one process group and is signalled with ``killpg``. Windows children are
started in a new process group and the tree is removed with ``taskkill /T``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from contextlib import suppress
from typing import Any

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_TERM_TIMEOUT = 1.0
DEFAULT_KILL_TIMEOUT = 2.0


def isolation_kwargs() -> dict[str, Any]:
    """Return create_subprocess_exec kwargs that make the child a tree root."""
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


async def kill_process_tree(
    process: asyncio.subprocess.Process,
    *,
    term_timeout: float = DEFAULT_TERM_TIMEOUT,
    kill_timeout: float = DEFAULT_KILL_TIMEOUT,
) -> None:
    """Terminate ``process`` and all of its descendants, best effort.

    Errors are logged and swallowed: the process may already be gone.
    """
    pid = process.pid
    try:
        if IS_WINDOWS:
            await _windows_kill_tree(process)
        else:
            _posix_signal_group(process, signal.SIGTERM)
            try:
                await asyncio.wait_for(process.wait(), timeout=term_timeout)
                logger.debug("process tree terminated pid=%s returncode=%s", pid, process.returncode)
            except TimeoutError:
                logger.debug("process tree ignored SIGTERM, killing pid=%s", pid)
            # descendants may outlive the leader, so the group is always killed
            _posix_signal_group(process, signal.SIGKILL)
        try:
            await asyncio.wait_for(process.wait(), timeout=kill_timeout)
        except TimeoutError:
            logger.warning("process did not exit after kill pid=%s", pid)
    except ProcessLookupError:
        logger.debug("process already exited pid=%s", pid)
    except Exception as exc:
        logger.debug("error killing process tree pid=%s: %s", pid, exc)


def _posix_signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
    # start_new_session makes the leader pid the group id, valid even after it is reaped
    try:
        os.killpg(process.pid, sig)
    except ProcessLookupError:
        pass
    except OSError as exc:
        logger.debug("killpg failed pid=%s, signalling process only: %s", process.pid, exc)
        with suppress(ProcessLookupError):
            process.send_signal(sig)


async def _windows_kill_tree(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        taskkill = await asyncio.create_subprocess_exec(
            "taskkill",
            "/T",
            "/F",
            "/PID",
            str(process.pid),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await taskkill.wait()
    except OSError as exc:
        logger.debug("taskkill failed pid=%s: %s", process.pid, exc)
    if process.returncode is None:
        with suppress(ProcessLookupError):
            process.kill()
