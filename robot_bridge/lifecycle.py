"""
Broker process lifecycle.

Runs an external command to start the broker (by default the
``mosquitto`` docker container) before the bridge connects, and another
to stop it on shutdown. Both are best-effort: failures are logged and
never stop the bridge.
"""

import logging
import shlex
import subprocess
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_START_COMMAND = "docker start mosquitto"
DEFAULT_STOP_COMMAND = "docker stop mosquitto"


class ProcessLifecycleController:
    """Start/stop commands for the broker's host process."""

    def __init__(
        self,
        start_command: Optional[str] = DEFAULT_START_COMMAND,
        stop_command: Optional[str] = DEFAULT_STOP_COMMAND,
        timeout: float = 30.0,
    ):
        """
        Args:
            start_command: Shell-style command run by start(), empty to skip
            stop_command: Shell-style command run by stop(), empty to skip
            timeout: Seconds to wait for each command
        """
        self.start_command = start_command
        self.stop_command = stop_command
        self.timeout = timeout

    def start(self) -> bool:
        """Start the broker process. Returns True on success."""
        return self._run("start", self.start_command)

    def stop(self) -> bool:
        """Stop the broker process. Returns True on success."""
        return self._run("stop", self.stop_command)

    def _run(self, action: str, command: Optional[str]) -> bool:
        if not command:
            logger.debug(f"No broker {action} command configured")
            return False

        try:
            run = subprocess.run(
                shlex.split(command),
                check=False,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to {action} broker process ({command}): {e}")
            return False
        except subprocess.TimeoutExpired:
            logger.error(f"Broker {action} command timed out after {self.timeout}s: {command}")
            return False

        if run.returncode != 0:
            logger.error(
                f"Broker {action} command failed with code {run.returncode}: "
                f"{run.stderr.strip()}"
            )
            return False
        if run.stderr.strip():
            logger.error(f"Broker {action} command reported: {run.stderr.strip()}")
            return False

        logger.info(f"Broker process {action} ok: {run.stdout.strip()}")
        return True
