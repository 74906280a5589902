# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Build orchestrators: the single process a provisioned image runs.

An orchestrator sees only the environment contract and the mounted source
in BUILD_DIR, builds for BUILD_TARGET and nothing else, writes artifacts
under OUTPUT_DIR and reports failure through a non-zero exit status.
"""

import os
import shutil
import stat
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .process_runner import CommandRunner, ProcessRunner
from ..MODELS.env_contract import EnvironmentContract

# Installed at the entry point path when a recipe brings no script of its own.
DEFAULT_ORCHESTRATOR_SCRIPT = """\
#!/bin/sh
# Builds the project in $BUILD_DIR for $BUILD_TARGET and copies the
# produced executables into $OUTPUT_DIR.
set -eu

cd "$BUILD_DIR"
cargo build --release --target "$BUILD_TARGET" "$@"

mkdir -p "$OUTPUT_DIR"
find "target/$BUILD_TARGET/release" -maxdepth 1 -type f -perm -u+x \\
    -exec cp {} "$OUTPUT_DIR/" \\;
"""


@dataclass
class BuildResult:
    """Exit status of a build and the artifacts it left in OUTPUT_DIR."""
    exit_code: int
    artifacts: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class BuildOrchestrator(ABC):
    """
    Interface of the build step the provisioner hands control to.
    """
    name = "orchestrator"

    @abstractmethod
    def run(self, contract: EnvironmentContract, args: Sequence[str] = ()) -> BuildResult:
        """
        Builds the project described by `contract`.

        :param contract: The image's environment contract.
        :param args: Arguments passed by the container runtime.
        :return: The build result; a failed build has a non-zero exit code.
        """

    @staticmethod
    def collect_artifacts(contract: EnvironmentContract) -> List[str]:
        """Files under OUTPUT_DIR, relative and sorted."""
        artifacts = []
        for dirpath, _, filenames in os.walk(contract.output_dir):
            for filename in filenames:
                full = os.path.join(dirpath, filename)
                artifacts.append(os.path.relpath(full, contract.output_dir))
        return sorted(artifacts)


class ScriptOrchestrator(BuildOrchestrator):
    """
    Runs an installed orchestrator executable as a child process.
    """
    name = "entrypoint"

    def __init__(self, command: List[str], env: Optional[Dict[str, str]] = None):
        """
        :param command: The entry point argv, e.g. ['/entrypoint.sh'].
        :param env: Complete process environment; the contract alone by default.
        """
        self.command = list(command)
        self.env = env
        self.runner = ProcessRunner(self.name)

    def run(self, contract, args=()):
        env = self.env if self.env is not None else contract.as_environ()
        working_dir = contract.build_dir if os.path.isdir(contract.build_dir) else None
        self.runner.start(self.command + list(args), env=env, working_dir=working_dir)
        exit_code = self.runner.wait()
        print(f"[{self.name}] Exited with status {exit_code}")
        return BuildResult(exit_code=exit_code, artifacts=self.collect_artifacts(contract))


class CargoOrchestrator(BuildOrchestrator):
    """
    Reference orchestrator: a release cargo build for the registered target,
    with the produced executables copied into OUTPUT_DIR.
    """
    name = "cargo"

    def __init__(self, runner: Optional[CommandRunner] = None, env: Optional[Dict[str, str]] = None):
        self.runner = runner or CommandRunner(self.name)
        self.env = env

    def release_dir(self, contract: EnvironmentContract) -> str:
        return os.path.join(contract.build_dir, "target", contract.build_target, "release")

    def run(self, contract, args=()):
        if not os.path.isfile(os.path.join(contract.build_dir, "Cargo.toml")):
            print(f"[{self.name}] No Cargo.toml in {contract.build_dir}")
            return BuildResult(exit_code=1)

        env = self.env if self.env is not None else contract.as_environ()
        command = ["cargo", "build", "--release", "--target", contract.build_target] + list(args)
        result = self.runner.run(command, env=env, cwd=contract.build_dir, check=False)
        if result.output:
            print(result.output)
        if not result.ok:
            return BuildResult(exit_code=result.returncode)

        os.makedirs(contract.output_dir, exist_ok=True)
        release_dir = self.release_dir(contract)
        if os.path.isdir(release_dir):
            for entry in sorted(os.listdir(release_dir)):
                path = os.path.join(release_dir, entry)
                mode = os.stat(path).st_mode
                if stat.S_ISREG(mode) and mode & stat.S_IXUSR:
                    shutil.copy2(path, os.path.join(contract.output_dir, entry))
                    print(f"[{self.name}] Copied {entry} to {contract.output_dir}")

        return BuildResult(exit_code=0, artifacts=self.collect_artifacts(contract))
