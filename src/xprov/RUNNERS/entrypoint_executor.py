"""
Container-side launcher for a provisioned root: runs the entry point, and
only the entry point, with the image's environment contract.
"""
import json
import os
import signal
import sys
from typing import List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .orchestrator import BuildResult, ScriptOrchestrator
from ..MANAGERS.environment_manager import EnvironmentManager
from ..MODELS.env_contract import EnvironmentContract
from ..MODELS.image_state import ImageConfig, ImageState
from ..UTILS.rootfs import IMAGE_CONFIG_FILE, STATE_FILE, in_root
from ..errors import ImageIncompleteError


class EntrypointExecutor:
    """
    Resolves and runs the entry point of a provisioned root.

    There is no shell fallback and no entry point override: an image without
    an entry point does not run.
    """
    def __init__(self, root: str = "/"):
        self.root = root

    def get_full_command(self, entrypoint: List[str], cmd: List[str],
                         args: Sequence[str] = ()) -> List[str]:
        """
        Combines the entry point with its arguments.

        :param entrypoint: The ENTRYPOINT list; must not be empty.
        :param cmd: Default arguments, replaced by runtime `args` when given.
        :param args: Arguments supplied by the container runtime.
        :return: The full command list.
        """
        if not entrypoint:
            raise ImageIncompleteError("Image has no entry point")
        return list(entrypoint) + (list(args) if args else list(cmd))

    def load(self) -> Tuple[ImageConfig, EnvironmentContract]:
        """
        Loads the image configuration and contract of a complete image.

        :raises ImageIncompleteError: If provisioning never completed.
        """
        state_path = in_root(self.root, STATE_FILE)
        config_path = in_root(self.root, IMAGE_CONFIG_FILE)
        try:
            with open(state_path, 'r') as f:
                state = ImageState(**json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ImageIncompleteError(f"{self.root} is not a provisioned image: {e}") from e

        if not state.complete:
            failed = f" (failed at step '{state.failed_step}')" if state.failed_step else ""
            raise ImageIncompleteError(f"Provisioning of {self.root} did not complete{failed}")

        try:
            with open(config_path, 'r') as f:
                config = ImageConfig(**json.load(f))
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            raise ImageIncompleteError(f"{self.root} has no image configuration: {e}") from e

        try:
            contract = EnvironmentManager(self.root).read_contract()
        except KeyError as e:
            raise ImageIncompleteError(f"Contract variable {e.args[0]} is missing") from e
        if contract is None:
            raise ImageIncompleteError(f"{self.root} has no environment contract")
        return config, contract

    def execute(self, args: Sequence[str] = ()) -> BuildResult:
        """
        Runs the entry point to completion.

        :param args: Arguments supplied by the container runtime.
        :return: The orchestrator's result; its exit code is passed through.
        """
        config, contract = self.load()
        command = self.get_full_command(config.entrypoint, config.cmd, args)
        # The entry point path is an image path; run its copy under the root
        command[0] = in_root(self.root, command[0])
        if not os.access(command[0], os.X_OK):
            raise ImageIncompleteError(f"Entry point {config.entrypoint[0]} is not executable")

        # BUILD_DIR, OUTPUT_DIR and the toolchain homes live under the root too
        host_contract = contract.relocated(self.root)
        env = EnvironmentManager.process_environment(host_contract)
        orchestrator = ScriptOrchestrator(command, env=env)

        previous = signal.signal(signal.SIGTERM, _exit_on_sigterm)
        try:
            return orchestrator.run(host_contract)
        finally:
            signal.signal(signal.SIGTERM, previous)


def _exit_on_sigterm(signum, frame):
    # Unwinds through ProcessRunner.wait, which stops the process tree
    sys.exit(128 + signum)


def run_entrypoint(root: str = "/", args: Optional[Sequence[str]] = None) -> int:
    """
    Runs the entry point of `root` and returns its exit status.
    """
    return EntrypointExecutor(root).execute(args or ()).exit_code
