"""
The environment variable contract shared by the provisioner and the build
orchestrator.
"""
import os
from typing import Dict, Mapping, Tuple
from pydantic import BaseModel, ConfigDict

from ..UTILS.rootfs import in_root

# Field name -> published variable name, in publication order.
CONTRACT_VARIABLES: Tuple[Tuple[str, str], ...] = (
    ("build_dir", "BUILD_DIR"),
    ("output_dir", "OUTPUT_DIR"),
    ("backtrace", "RUST_BACKTRACE"),
    ("rustup_home", "RUSTUP_HOME"),
    ("cargo_home", "CARGO_HOME"),
    ("path", "PATH"),
    ("prefix", "PREFIX"),
    ("build_target", "BUILD_TARGET"),
)

# Contract fields holding image directories.
DIRECTORY_FIELDS = ("build_dir", "output_dir", "rustup_home", "cargo_home", "prefix")


class EnvironmentContract(BaseModel):
    """
    Immutable mapping of variables visible to every process in the image.

    Values are fixed when the recipe is loaded and never change per
    invocation; per-build parameters belong to the orchestrator's inputs.
    """
    model_config = ConfigDict(frozen=True)

    build_dir: str
    output_dir: str
    backtrace: bool
    rustup_home: str
    cargo_home: str
    path: str
    prefix: str
    build_target: str

    @property
    def cargo_bin(self) -> str:
        return self.cargo_home.rstrip("/") + "/bin"

    def relocated(self, root: str) -> "EnvironmentContract":
        """
        The contract as seen from the host when the image filesystem lives
        under `root`: directory variables, and the cargo bin entry of PATH,
        point into the root. An in-place root ('/') returns the contract itself.
        """
        if os.path.abspath(root) == "/":
            return self
        update = {name: in_root(root, getattr(self, name)) for name in DIRECTORY_FIELDS}
        entries = [in_root(root, entry) if entry == self.cargo_bin else entry
                   for entry in self.path.split(":")]
        update["path"] = ":".join(entries)
        return self.model_copy(update=update)

    def as_environ(self) -> Dict[str, str]:
        """
        Renders the contract as process environment variables.

        :return: Variable name to string value, in publication order.
        """
        environ = {}
        for field_name, variable in CONTRACT_VARIABLES:
            value = getattr(self, field_name)
            if isinstance(value, bool):
                value = "1" if value else "0"
            environ[variable] = value
        return environ

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "EnvironmentContract":
        """
        Rebuilds a contract from published variables, e.g. a persisted env file.

        :raises KeyError: If a contract variable is missing.
        """
        values = {}
        for field_name, variable in CONTRACT_VARIABLES:
            value = environ[variable]
            if field_name == "backtrace":
                value = value not in ("", "0")
            values[field_name] = value
        return cls(**values)
