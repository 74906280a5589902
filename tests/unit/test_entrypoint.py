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
Unit tests for the entry executor and the build orchestrators.
"""
import os
import stat

import pytest
from xprov.BUILDERS.provisioner import Provisioner
from xprov.MODELS.recipe import ProvisioningRecipe
from xprov.RUNNERS.entrypoint_executor import EntrypointExecutor, run_entrypoint
from xprov.RUNNERS.orchestrator import CargoOrchestrator
from xprov.RUNNERS.process_runner import CommandResult, CommandRunner
from xprov.UTILS.rootfs import in_root
from xprov.errors import ImageIncompleteError, PackageInstallError

SCRIPT = """\
#!/bin/sh
mkdir -p "$OUTPUT_DIR"
echo "$BUILD_TARGET $*" > "$OUTPUT_DIR/args.txt"
pwd > "$OUTPUT_DIR/cwd.txt"
env > "$OUTPUT_DIR/env.txt"
exit 3
"""


@pytest.fixture
def image(tmp_path, fake_system, fetched_installers):
    """A root provisioned with SCRIPT as its entry point."""
    script = tmp_path / "build.sh"
    script.write_text(SCRIPT)
    recipe = ProvisioningRecipe(entrypoint={"source": str(script)})
    root = str(tmp_path / "root")
    Provisioner(recipe, root=root, runner=fake_system).provision()
    return root, recipe


class TestEntrypointExecutor:
    """The entry point is the only thing a provisioned image runs."""

    def test_full_command(self):
        executor = EntrypointExecutor()
        assert executor.get_full_command(["/entrypoint.sh"], [], ["--locked"]) == ["/entrypoint.sh", "--locked"]
        assert executor.get_full_command(["/entrypoint.sh"], ["--release"]) == ["/entrypoint.sh", "--release"]
        assert executor.get_full_command(["/entrypoint.sh"], ["--release"], ["-v"]) == ["/entrypoint.sh", "-v"]

    def test_no_entrypoint_refused(self):
        with pytest.raises(ImageIncompleteError):
            EntrypointExecutor().get_full_command([], ["bash"])

    def test_unprovisioned_root_refused(self, tmp_path):
        with pytest.raises(ImageIncompleteError):
            EntrypointExecutor(str(tmp_path)).execute()

    def test_failed_provisioning_refused(self, tmp_path, fake_system, fetched_installers):
        fake_system.broken_packages.add("curl")
        with pytest.raises(PackageInstallError):
            Provisioner(ProvisioningRecipe(), root=str(tmp_path), runner=fake_system).provision()
        with pytest.raises(ImageIncompleteError) as excinfo:
            EntrypointExecutor(str(tmp_path)).load()
        assert "packages" in str(excinfo.value)

    def test_exit_code_and_contract(self, image, monkeypatch):
        root, recipe = image
        monkeypatch.setenv("XPROV_TEST_LEAK", "1")
        result = EntrypointExecutor(root).execute(["--locked"])

        assert result.exit_code == 3
        assert not result.ok
        assert result.artifacts == ["args.txt", "cwd.txt", "env.txt"]
        out = in_root(root, "/output")
        with open(os.path.join(out, "args.txt")) as f:
            assert f.read() == "x86_64-unknown-linux-musl --locked\n"

        with open(os.path.join(out, "env.txt")) as f:
            env = f.read()
        assert "XPROV_TEST_LEAK" not in env
        for key, value in recipe.contract.relocated(root).as_environ().items():
            assert f"{key}={value}\n" in env

    def test_directories_resolve_under_root(self, image):
        root, _ = image
        EntrypointExecutor(root).execute()
        out = in_root(root, "/output")
        with open(os.path.join(out, "cwd.txt")) as f:
            cwd = f.read().strip()
        assert os.path.realpath(cwd) == os.path.realpath(in_root(root, "/build"))
        with open(os.path.join(out, "env.txt")) as f:
            env = f.read()
        assert f"OUTPUT_DIR={out}\n" in env
        assert f"CARGO_HOME={in_root(root, '/usr/local/cargo')}\n" in env

    def test_run_entrypoint(self, image):
        root, _ = image
        assert run_entrypoint(root) == 3


class FakeCargo(CommandRunner):
    """Leaves a release build behind, or fails like a compile error."""

    def __init__(self, returncode=0):
        super().__init__("test", quiet=True)
        self.returncode = returncode
        self.commands = []

    def run(self, command, env=None, cwd=None, check=True):
        self.commands.append((list(command), cwd))
        if self.returncode == 0:
            release = os.path.join(cwd, "target", env["BUILD_TARGET"], "release")
            os.makedirs(os.path.join(release, "deps"), exist_ok=True)
            for name, mode in (("app", 0o755), ("app.d", 0o644)):
                path = os.path.join(release, name)
                with open(path, "w") as f:
                    f.write(name)
                os.chmod(path, mode)
        return CommandResult(list(command), self.returncode, "", "")


class TestCargoOrchestrator:
    """Tests for the reference cargo orchestrator."""

    @pytest.fixture
    def contract(self, tmp_path):
        recipe = ProvisioningRecipe(
            environment={"build_dir": str(tmp_path / "src"), "output_dir": str(tmp_path / "out")},
        )
        os.makedirs(tmp_path / "src")
        return recipe.contract

    def test_missing_manifest(self, contract):
        cargo = FakeCargo()
        result = CargoOrchestrator(runner=cargo).run(contract)
        assert result.exit_code == 1
        assert cargo.commands == []

    def test_build_collects_executables(self, contract, tmp_path):
        (tmp_path / "src" / "Cargo.toml").write_text('[package]\nname = "app"\n')
        cargo = FakeCargo()
        result = CargoOrchestrator(runner=cargo).run(contract, ["--locked"])

        assert result.ok
        assert result.artifacts == ["app"]
        assert os.stat(tmp_path / "out" / "app").st_mode & stat.S_IXUSR
        command, cwd = cargo.commands[0]
        assert command == ["cargo", "build", "--release", "--target", "x86_64-unknown-linux-musl", "--locked"]
        assert cwd == contract.build_dir

    def test_build_failure_passes_exit_code(self, contract, tmp_path):
        (tmp_path / "src" / "Cargo.toml").write_text('[package]\nname = "app"\n')
        result = CargoOrchestrator(runner=FakeCargo(returncode=101)).run(contract)
        assert result.exit_code == 101
        assert result.artifacts == []
