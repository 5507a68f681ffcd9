"""
pulsebeats - Sink Resolver
Finds the index of the audio server's currently running output sink.
"""

import os
import subprocess
from typing import Callable, Iterable, Iterator, Optional, Sequence

from config import DiscoveryConfig
from errors import DeviceNotFoundError
from logging_utils import log_event


def scan_running_index(lines: Iterable[str], marker: str = 'RUNNING') -> Optional[int]:
    """Return the zero-based index of the first line carrying ``marker``.

    Lines are consumed lazily and the scan stops at the first match, so a
    streaming source is never read further than needed. Returns None when
    no line matches.
    """
    needle = marker.lower()
    for index, line in enumerate(lines):
        if needle in line.lower():
            return index
    return None


def iter_state_lines(command: Sequence[str], state_prefix: str = 'state:') -> Iterator[str]:
    """Run the enumeration command and yield its sink state lines in order.

    Equivalent to ``<command> | grep state``. The child runs with LC_ALL=C so
    the state keywords are not translated.
    """
    env = dict(os.environ, LC_ALL='C')
    prefix = state_prefix.lower()
    with subprocess.Popen(
        list(command),
        stdout=subprocess.PIPE,
        stderr=subprocess.DEVNULL,
        encoding='utf-8',
        errors='replace',
        env=env,
    ) as proc:
        try:
            for line in proc.stdout:
                if prefix in line.lower():
                    yield line.rstrip('\n')
        except GeneratorExit:
            # Scan stopped early; don't leave the child blocked on a full pipe
            proc.terminate()
            raise
        returncode = proc.wait()
    if returncode:
        raise subprocess.CalledProcessError(returncode, list(command))


class SinkResolver:
    """Resolves the running sink once per capture session.

    ``query`` yields one status line per sink in enumeration order. It
    defaults to running the configured enumeration command.
    """

    def __init__(self, config: Optional[DiscoveryConfig] = None,
                 query: Optional[Callable[[], Iterable[str]]] = None):
        self.config = config or DiscoveryConfig()
        self._query = query or self._run_enumeration

    def _run_enumeration(self) -> Iterable[str]:
        return iter_state_lines(self.config.enumeration_command, self.config.state_prefix)

    def resolve(self) -> str:
        command = list(self.config.enumeration_command)
        lines = None
        try:
            lines = self._query()
            index = scan_running_index(lines, self.config.running_marker)
        except (OSError, ValueError, subprocess.CalledProcessError) as e:
            raise DeviceNotFoundError(
                f"could not run sink enumeration ({' '.join(command)}): {e}", command
            ) from e
        finally:
            close = getattr(lines, 'close', None)
            if callable(close):
                close()

        if index is None:
            raise DeviceNotFoundError(
                f"could not find a running sink device (ran {' '.join(command)})", command
            )

        log_event("INFO", "Discovery", "Found running sink", index=index)
        return str(index)
