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
Shared fixtures: a simulated Ubuntu system behind the command runner, so
provisioning can be exercised without apt, rustup or network access.
"""
import pytest

from xprov.MANAGERS.toolchain_manager import ToolchainManager
from xprov.MODELS.recipe import ProvisioningRecipe
from xprov.RUNNERS.process_runner import COMMAND_NOT_FOUND, CommandResult, CommandRunner
from xprov.errors import CommandError, UnresolvablePinError

HOST_TRIPLE = "x86_64-unknown-linux-gnu"
KNOWN_TARGETS = {
    "x86_64-unknown-linux-gnu",
    "x86_64-unknown-linux-musl",
    "aarch64-unknown-linux-musl",
    "armv7-unknown-linux-musleabihf",
}
FAKE_DIGEST = "sha256:" + "ab" * 32


class FakeSystem(CommandRunner):
    """
    Command runner answering like a minimal Ubuntu image would.

    The linker only works once build-essential is installed, and rustup,
    cargo and rustc exist only after the installer has run.
    """

    def __init__(self):
        super().__init__("test", quiet=True)
        self.commands = []
        self.installed_packages = set()
        self.broken_packages = set()
        self.toolchains = []
        self.targets = []
        self.rustup_installed = False

    def run(self, command, env=None, cwd=None, check=True):
        command = list(command)
        self.commands.append(command)
        result = self._answer(command)
        if check and not result.ok:
            raise CommandError(command, result.returncode, result.output)
        return result

    def ran(self, *prefix):
        """Commands that start with the given words."""
        return [c for c in self.commands if c[:len(prefix)] == list(prefix)]

    def _ok(self, command, stdout=""):
        return CommandResult(command, 0, stdout, "")

    def _fail(self, command, returncode, stderr):
        return CommandResult(command, returncode, "", stderr)

    def _answer(self, command):
        program, args = command[0], command[1:]
        if program == "dpkg-query":
            if args[-1] in self.installed_packages:
                return self._ok(command, "install ok installed")
            return self._fail(command, 1, f"dpkg-query: no packages found matching {args[-1]}")
        if program == "apt-get":
            return self._apt(command, args)
        if program == "cc":
            if "build-essential" not in self.installed_packages:
                return self._fail(command, COMMAND_NOT_FOUND, "cc: not found")
            return self._ok(command, "cc (Ubuntu 7.5.0-3ubuntu1~18.04) 7.5.0\n")
        if program == "sh":
            return self._installer(command, args)
        if program in ("rustup", "cargo", "rustc"):
            if not self.rustup_installed:
                return self._fail(command, COMMAND_NOT_FOUND, f"{program}: not found")
            if program == "rustup":
                return self._rustup(command, args)
            return self._ok(command, f"{program} 1.80.0-nightly (7c52d2db6 2024-06-03)\n")
        return self._fail(command, COMMAND_NOT_FOUND, f"{program}: not found")

    def _apt(self, command, args):
        if args[0] != "install":
            return self._ok(command)
        packages = [a for a in args[1:] if not a.startswith("-")]
        broken = [p for p in packages if p in self.broken_packages]
        if broken:
            return self._fail(command, 100, f"E: Unable to locate package {broken[0]}")
        self.installed_packages.update(packages)
        return self._ok(command)

    def _installer(self, command, args):
        channel = args[args.index("--default-toolchain") + 1]
        self.rustup_installed = True
        toolchain = f"{channel}-{HOST_TRIPLE}"
        if toolchain not in self.toolchains:
            self.toolchains.append(toolchain)
        if HOST_TRIPLE not in self.targets:
            self.targets.append(HOST_TRIPLE)
        return self._ok(command, "Rust is installed now. Great!\n")

    def _rustup(self, command, args):
        if args == ["--version"]:
            return self._ok(command, "rustup 1.27.1 (54dd3d00f 2024-04-24)\n")
        if args == ["toolchain", "list"]:
            lines = [f"{name} (default)" if i == 0 else name for i, name in enumerate(self.toolchains)]
            return self._ok(command, "\n".join(lines) + "\n")
        if args == ["target", "list", "--installed"]:
            return self._ok(command, "".join(t + "\n" for t in self.targets))
        if args[:2] == ["target", "add"]:
            triple = args[2]
            if triple not in KNOWN_TARGETS:
                return self._fail(command, 1, f"error: toolchain '{self.toolchains[0]}' "
                                              f"does not support target '{triple}'")
            if triple not in self.targets:
                self.targets.append(triple)
            return self._ok(command)
        return self._fail(command, 1, f"error: unrecognized rustup command {args}")


class FakeRegistry:
    """Registry that resolves every reference to one digest, or refuses all."""

    def __init__(self, digest=FAKE_DIGEST, missing=False):
        self.digest = digest
        self.missing = missing
        self.resolved = []

    def resolve_digest(self, ref):
        self.resolved.append(ref.short_name)
        if self.missing:
            raise UnresolvablePinError(f"Image {ref.short_name} not found", step="pin")
        return self.digest


@pytest.fixture
def fake_system():
    return FakeSystem()


@pytest.fixture
def fetched_installers(monkeypatch):
    """Replaces the installer download with a local stub script."""
    fetched = []

    def fake_fetch(self, url, dest, sha256=None, timeout=60.0):
        fetched.append(url)
        with open(dest, "w") as f:
            f.write("#!/bin/sh\nexit 0\n")
        return dest

    monkeypatch.setattr(ToolchainManager, "fetch_installer", fake_fetch)
    return fetched


@pytest.fixture
def recipe():
    return ProvisioningRecipe()


@pytest.fixture
def fake_registry():
    return FakeRegistry()
