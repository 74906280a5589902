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
Toolchain manager (rustup) installation, target registration and version queries.
"""

import hashlib
import os
from typing import Dict, List, Optional
from urllib.request import urlopen, Request
from urllib.error import URLError

from ..MODELS.target_triple import TargetTriple
from ..RUNNERS.process_runner import CommandRunner
from ..errors import ToolchainInstallError

MANAGER_BINARY = "rustup"
COMPILER_BINARY = "rustc"
BUILD_TOOL_BINARY = "cargo"


class ToolchainManager:
    """
    Drives rustup inside the environment contract.

    All commands run with the contract environment so that the manager,
    its toolchains and its targets land under RUSTUP_HOME and CARGO_HOME.
    """

    def __init__(self, runner: CommandRunner, env: Dict[str, str]):
        """
        Args:
            runner: Runs toolchain commands.
            env: The contract process environment.
        """
        self.runner = runner
        self.env = dict(env)

    @staticmethod
    def installer_args(channel: str, profile: Optional[str] = None) -> List[str]:
        """Non-interactive installer flags; shell startup files stay untouched."""
        args = ["-y", "--default-toolchain", channel, "--no-modify-path"]
        if profile:
            args += ["--profile", profile]
        return args

    def fetch_installer(self, url: str, dest: str, sha256: Optional[str] = None,
                        timeout: float = 60.0) -> str:
        """
        Downloads the installer script from its pinned URL.

        Args:
            url: https URL of the installer.
            dest: File to write the installer to.
            sha256: Expected hex digest; checked when given.
            timeout: Network timeout in seconds.

        Returns:
            The path of the downloaded installer.

        Raises:
            ToolchainInstallError: On fetch failure or digest mismatch.
        """
        print(f"[{self.runner.name}] Fetching toolchain installer from {url}")
        try:
            with urlopen(Request(url), timeout=timeout) as response:
                content = response.read()
        except (URLError, OSError) as e:
            raise ToolchainInstallError(f"Could not fetch installer {url}: {e}", step="toolchain") from e

        if sha256:
            actual = hashlib.sha256(content).hexdigest()
            if actual != sha256:
                raise ToolchainInstallError(
                    f"Installer {url} has sha256 {actual}, expected {sha256}", step="toolchain"
                )

        os.makedirs(os.path.dirname(os.path.abspath(dest)), exist_ok=True)
        with open(dest, 'wb') as f:
            f.write(content)
        os.chmod(dest, 0o755)
        return dest

    def install(self, installer_path: str, channel: str, profile: Optional[str] = None) -> None:
        """
        Runs the downloaded installer for `channel`.

        Raises:
            CommandError: If the installer exits non-zero.
        """
        self.runner.run(["sh", installer_path] + self.installer_args(channel, profile), env=self.env)

    def installed_toolchains(self) -> List[str]:
        """
        Toolchain names reported by the manager, e.g. 'nightly-x86_64-unknown-linux-gnu'.
        An absent manager reports none.
        """
        result = self.runner.run([MANAGER_BINARY, "toolchain", "list"], env=self.env, check=False)
        if not result.ok:
            return []
        names = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line or line.startswith("no installed toolchains"):
                continue
            names.append(line.split()[0])
        return names

    def has_channel(self, channel: str) -> bool:
        """
        True when a toolchain of exactly `channel` is installed for some host.
        'nightly' does not match a dated 'nightly-2024-01-01-...' toolchain.
        """
        for name in self.installed_toolchains():
            if name == channel:
                return True
            if name.startswith(channel + "-"):
                try:
                    TargetTriple.parse(name[len(channel) + 1:])
                except ValueError:
                    continue
                return True
        return False

    def installed_targets(self) -> List[str]:
        """
        Targets registered with the manager.

        Raises:
            CommandError: If the manager cannot list targets.
        """
        result = self.runner.run([MANAGER_BINARY, "target", "list", "--installed"], env=self.env)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    @staticmethod
    def add_target_command(triple: str) -> List[str]:
        return [MANAGER_BINARY, "target", "add", triple]

    def add_target(self, triple: str) -> bool:
        """
        Registers a compile target. Registering an installed target is a no-op.

        Returns:
            False when the target was already registered.

        Raises:
            CommandError: If the manager rejects the target.
        """
        if triple in self.installed_targets():
            print(f"[{self.runner.name}] Target {triple} already registered")
            return False
        self.runner.run(self.add_target_command(triple), env=self.env)
        return True

    def version(self, binary: str) -> str:
        """
        First line of `<binary> --version`.

        Raises:
            CommandError: If the binary is missing or fails.
        """
        result = self.runner.run([binary, "--version"], env=self.env)
        lines = result.stdout.strip().splitlines()
        return lines[0].strip() if lines else ""

    def probe(self, binary: str) -> bool:
        """True when `<binary> --version` succeeds."""
        return self.runner.run([binary, "--version"], env=self.env, check=False).ok
