"""
Managers for persisting the environment contract at image level and for
building the environment of spawned processes.
"""
import os
from typing import Dict, Iterable, Optional

from dotenv import dotenv_values, set_key

from ..MODELS.env_contract import EnvironmentContract
from ..UTILS.rootfs import CONTRACT_FILE, in_root

# Runtime-provided variables a container process would see besides the image env
PASSTHROUGH_VARIABLES = ("HOME", "USER", "LANG", "LC_ALL", "TERM", "HOSTNAME", "TMPDIR")


class EnvironmentManager:
    """
    Owns the contract file of a provisioned root.

    The file is the image-level equivalent of Dockerfile ENV: every process
    the image starts gets these values, whatever its shell or login mode.
    """
    def __init__(self, root: str = "/"):
        """
        Initializes the environment manager.

        :param root: Host directory holding the image filesystem.
        """
        self.root = root
        self.contract_path = in_root(root, CONTRACT_FILE)

    def write_contract(self, contract: EnvironmentContract) -> str:
        """
        Writes the contract, replacing any previous file.

        :return: The host path of the contract file.
        """
        os.makedirs(os.path.dirname(self.contract_path), exist_ok=True)
        with open(self.contract_path, 'w'):
            pass
        for key, value in contract.as_environ().items():
            set_key(self.contract_path, key, value, quote_mode="never")
        return self.contract_path

    def read_contract(self) -> Optional[EnvironmentContract]:
        """
        Reads the persisted contract, or None before it has been written.
        """
        if not os.path.exists(self.contract_path):
            return None
        values = {k: v for k, v in dotenv_values(self.contract_path).items() if v is not None}
        return EnvironmentContract.from_environ(values)

    @staticmethod
    def process_environment(contract: EnvironmentContract,
                            extra: Optional[Dict[str, str]] = None,
                            passthrough: Iterable[str] = PASSTHROUGH_VARIABLES) -> Dict[str, str]:
        """
        Builds the complete environment of a spawned process.

        Only a few runtime variables are taken from the current process;
        the contract overrides them and `extra` never overrides the contract.

        :param contract: The fixed contract.
        :param extra: Additional variables, e.g. DEBIAN_FRONTEND.
        :param passthrough: Variable names inherited from the current process.
        :return: A dictionary usable as a subprocess environment.
        """
        env = {name: os.environ[name] for name in passthrough if name in os.environ}
        for key, value in (extra or {}).items():
            env[key] = value
        env.update(contract.as_environ())
        return env
