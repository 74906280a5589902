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
The provisioning steps, in the order a build image is assembled:
pin -> packages -> toolchain -> target -> verify -> contract -> entrypoint.

Each step is idempotent: running it against a root where its work is
already done changes nothing.
"""

import hashlib
import json
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from ..MANAGERS.environment_manager import EnvironmentManager
from ..MANAGERS.package_manager import PackageManager
from ..MANAGERS.toolchain_manager import (
    ToolchainManager, MANAGER_BINARY, COMPILER_BINARY, BUILD_TOOL_BINARY,
)
from ..MODELS.env_contract import EnvironmentContract
from ..MODELS.image_state import ImageState, ImageConfig
from ..MODELS.recipe import ProvisioningRecipe
from ..REGISTRY.registry_client import RegistryClient
from ..RUNNERS.orchestrator import DEFAULT_ORCHESTRATOR_SCRIPT
from ..RUNNERS.process_runner import CommandRunner
from ..UTILS.rootfs import IMAGE_CONFIG_FILE, OS_RELEASE_FILE, in_root, read_os_release
from ..errors import (
    CommandError,
    PackageInstallError,
    ProvisioningError,
    ProvisioningOrderError,
    RecipeError,
    TargetRegistrationError,
    ToolchainInstallError,
    ToolchainVerificationError,
    UnresolvablePinError,
)


@dataclass
class ProvisioningContext:
    """
    Everything a step may read or touch during one provisioning run.

    ``registry`` is None when pin resolution is disabled.
    """
    recipe: ProvisioningRecipe
    root: str
    runner: CommandRunner
    state: ImageState
    registry: Optional[RegistryClient] = None

    @property
    def contract(self) -> EnvironmentContract:
        return self.recipe.contract

    @property
    def host_contract(self) -> EnvironmentContract:
        return self.contract.relocated(self.root)

    @property
    def env(self) -> Dict[str, str]:
        # Toolchain commands install into the contract directories under the root
        return EnvironmentManager.process_environment(
            self.host_contract, extra={"DEBIAN_FRONTEND": "noninteractive"}
        )

    @property
    def packages(self) -> PackageManager:
        return PackageManager(self.runner, self.env)

    @property
    def toolchain(self) -> ToolchainManager:
        return ToolchainManager(self.runner, self.env)

    @property
    def environment(self) -> EnvironmentManager:
        return EnvironmentManager(self.root)

    def host_path(self, image_path: str) -> str:
        return in_root(self.root, image_path)


class ProvisioningStep:
    """
    One ordered, idempotent provisioning step.

    ``requires`` names the steps that must have completed before this one;
    ``cacheable`` steps are skipped when their fingerprint and the system
    both show the work is already done.
    """
    name = ""
    requires: Tuple[str, ...] = ()
    cacheable = True
    error_class = ProvisioningError

    def inputs(self, recipe: ProvisioningRecipe) -> Dict[str, Any]:
        """The recipe values this step's outcome depends on."""
        return {}

    def fingerprint(self, recipe: ProvisioningRecipe, parent: str = "") -> str:
        """
        Chained fingerprint: this step's inputs plus the previous step's
        fingerprint, so changing an early layer invalidates all later ones.
        """
        payload = json.dumps(
            {"step": self.name, "parent": parent, "inputs": self.inputs(recipe)},
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode()).hexdigest()

    def is_satisfied(self, ctx: ProvisioningContext) -> bool:
        return False

    def check_preconditions(self, ctx: ProvisioningContext) -> None:
        for required in self.requires:
            if not ctx.state.has_completed(required):
                raise ProvisioningOrderError(
                    f"Step '{required}' must complete before '{self.name}'", step=self.name
                )

    def execute(self, ctx: ProvisioningContext) -> None:
        raise NotImplementedError

    def run(self, ctx: ProvisioningContext) -> None:
        """
        Checks preconditions and executes, mapping command and filesystem
        failures onto this step's error class.
        """
        self.check_preconditions(ctx)
        try:
            self.execute(ctx)
        except CommandError as e:
            raise self.error_class(str(e), step=self.name) from e
        except OSError as e:
            raise self.error_class(f"{type(e).__name__}: {e}", step=self.name) from e

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"


class PinBaseImage(ProvisioningStep):
    """Checks the base image pin, resolves it to a digest and records it."""
    name = "pin"
    error_class = UnresolvablePinError

    def inputs(self, recipe):
        return {"base_image": recipe.base_image}

    def is_satisfied(self, ctx):
        if ctx.state.base_image != ctx.recipe.base_image:
            return False
        # A pin recorded without resolution is resolved once a registry is available
        return ctx.registry is None or bool(ctx.state.base_digest)

    def execute(self, ctx):
        try:
            ref = ctx.recipe.image_reference.require_pinned()
        except RecipeError as e:
            raise UnresolvablePinError(str(e), step=self.name) from e

        release = read_os_release(ctx.host_path(OS_RELEASE_FILE))
        if release.get("ID"):
            versions = {release.get("VERSION_ID"), release.get("VERSION_CODENAME")}
            if release["ID"] != ref.distribution or (ref.tag and ref.tag not in versions):
                raise UnresolvablePinError(
                    f"Root is {release['ID']} {release.get('VERSION_ID', '?')}, "
                    f"not the pinned {ref.short_name}",
                    step=self.name,
                )

        digest = None
        if ctx.registry is not None:
            digest = ctx.registry.resolve_digest(ref)
            print(f"[{self.name}] {ref.short_name} resolved to {digest}")
        else:
            print(f"[{self.name}] Registry resolution skipped for {ref.short_name}")

        ctx.state.base_image = ctx.recipe.base_image
        ctx.state.base_digest = digest or ref.digest


class InstallSystemPackages(ProvisioningStep):
    """Installs the fixed system package set the toolchain installer needs."""
    name = "packages"
    requires = ("pin",)
    error_class = PackageInstallError

    def inputs(self, recipe):
        return {"packages": recipe.system_packages}

    def is_satisfied(self, ctx):
        return not ctx.packages.missing(ctx.recipe.system_packages)

    def execute(self, ctx):
        ctx.packages.install(ctx.recipe.system_packages)
        missing = ctx.packages.missing(ctx.recipe.system_packages)
        if missing:
            raise PackageInstallError(
                f"Packages still missing after install: {', '.join(missing)}", step=self.name
            )
        ctx.state.packages = list(ctx.recipe.system_packages)


class InstallToolchain(ProvisioningStep):
    """Installs the toolchain manager and the requested channel."""
    name = "toolchain"
    requires = ("packages",)
    error_class = ToolchainInstallError

    def inputs(self, recipe):
        spec = recipe.toolchain
        return {
            "installer_url": spec.installer_url,
            "installer_sha256": spec.installer_sha256,
            "channel": spec.channel,
            "profile": spec.profile,
            "rustup_home": recipe.environment.rustup_home,
            "cargo_home": recipe.environment.cargo_home,
        }

    def is_satisfied(self, ctx):
        return ctx.toolchain.has_channel(ctx.recipe.toolchain.channel)

    def execute(self, ctx):
        spec = ctx.recipe.toolchain
        toolchain = ctx.toolchain

        # The installer probes for a working linker
        if not toolchain.probe(spec.linker):
            raise ProvisioningOrderError(
                f"No working linker '{spec.linker}'; system packages must be installed "
                "before the toolchain",
                step=self.name,
            )

        if toolchain.has_channel(spec.channel):
            print(f"[{self.name}] Channel {spec.channel} already installed")
        else:
            with tempfile.TemporaryDirectory(prefix="xprov-") as tmp:
                installer = toolchain.fetch_installer(
                    spec.installer_url, os.path.join(tmp, "rustup-init.sh"), spec.installer_sha256
                )
                toolchain.install(installer, spec.channel, spec.profile)
            if not toolchain.has_channel(spec.channel):
                raise ToolchainInstallError(
                    f"Installer finished but channel {spec.channel} is not installed", step=self.name
                )

        if spec.is_floating:
            print(f"[{self.name}] Channel {spec.channel} is a moving release stream; "
                  "the resolved version is recorded by the verify step")
        ctx.state.toolchain_channel = spec.channel


class RegisterTarget(ProvisioningStep):
    """Registers the one compile target the orchestrator builds for."""
    name = "target"
    requires = ("toolchain",)
    error_class = TargetRegistrationError

    def inputs(self, recipe):
        return {"target": recipe.target}

    def is_satisfied(self, ctx):
        try:
            return ctx.recipe.target in ctx.toolchain.installed_targets()
        except CommandError:
            return False

    def execute(self, ctx):
        target = ctx.recipe.target
        try:
            ctx.toolchain.add_target(target)
        except CommandError as e:
            raise TargetRegistrationError(
                f"Target {target} is not supported by the installed toolchain: {e}", step=self.name
            ) from e

        installed = ctx.toolchain.installed_targets()
        if target not in installed:
            raise TargetRegistrationError(f"Target {target} is not registered", step=self.name)
        ctx.state.targets = installed


class VerifyToolchain(ProvisioningStep):
    """Smoke test: every toolchain binary answers a version query."""
    name = "verify"
    requires = ("toolchain", "target")
    cacheable = False
    error_class = ToolchainVerificationError

    def execute(self, ctx):
        toolchain = ctx.toolchain
        versions = {}
        for binary in (MANAGER_BINARY, BUILD_TOOL_BINARY, COMPILER_BINARY, ctx.recipe.toolchain.linker):
            versions[binary] = toolchain.version(binary)
            print(f"[{self.name}] {binary}: {versions[binary]}")

        if ctx.recipe.target not in toolchain.installed_targets():
            raise ToolchainVerificationError(
                f"Target {ctx.recipe.target} missing from installed targets", step=self.name
            )
        ctx.state.toolchain_versions = versions


class FixEnvironmentContract(ProvisioningStep):
    """Persists the environment contract and creates the build directories."""
    name = "contract"
    requires = ("pin",)

    def inputs(self, recipe):
        return {"contract": recipe.contract.as_environ()}

    def is_satisfied(self, ctx):
        contract = ctx.contract
        host = ctx.host_contract
        return (ctx.environment.read_contract() == contract
                and os.path.isdir(host.build_dir)
                and os.path.isdir(host.output_dir))

    def execute(self, ctx):
        contract = ctx.contract
        path = ctx.environment.write_contract(contract)
        print(f"[{self.name}] Wrote {len(contract.as_environ())} variables to {path}")

        host = ctx.host_contract
        for directory in (host.build_dir, host.output_dir):
            os.makedirs(directory, exist_ok=True)
        if not os.access(host.output_dir, os.W_OK):
            raise ProvisioningError(f"Output directory {contract.output_dir} is not writable",
                                    step=self.name)


class InstallEntrypoint(ProvisioningStep):
    """Installs the orchestrator as the image's sole entry point."""
    name = "entrypoint"
    requires = ("pin",)

    @staticmethod
    def script_content(recipe: ProvisioningRecipe) -> bytes:
        source = recipe.entrypoint.source
        if not source:
            return DEFAULT_ORCHESTRATOR_SCRIPT.encode("utf-8")
        if not os.path.isfile(source):
            raise ProvisioningError(f"Entrypoint source {source} not found", step="entrypoint")
        with open(source, 'rb') as f:
            return f.read()

    def inputs(self, recipe):
        return {
            "path": recipe.entrypoint.path,
            "script": hashlib.sha256(self.script_content(recipe)).hexdigest(),
            "labels": recipe.labels,
            "contract": recipe.contract.as_environ(),
        }

    def is_satisfied(self, ctx):
        path = ctx.host_path(ctx.recipe.entrypoint.path)
        return (os.path.isfile(path) and os.access(path, os.X_OK)
                and os.path.isfile(ctx.host_path(IMAGE_CONFIG_FILE)))

    def execute(self, ctx):
        recipe = ctx.recipe
        target = ctx.host_path(recipe.entrypoint.path)
        os.makedirs(os.path.dirname(target), exist_ok=True)
        with open(target, 'wb') as f:
            f.write(self.script_content(recipe))
        os.chmod(target, 0o755)

        config = ImageConfig(
            entrypoint=[recipe.entrypoint.path],
            cmd=[],
            env=ctx.contract.as_environ(),
            labels=recipe.labels,
            working_dir=ctx.contract.build_dir,
        )
        config_path = ctx.host_path(IMAGE_CONFIG_FILE)
        os.makedirs(os.path.dirname(config_path), exist_ok=True)
        with open(config_path, 'w') as f:
            f.write(config.model_dump_json(indent=2))

        print(f"[{self.name}] Installed {recipe.entrypoint.path} as the entry point")
        ctx.state.entrypoint = recipe.entrypoint.path


def default_steps():
    """The provisioning pipeline in its required order."""
    return [
        PinBaseImage(),
        InstallSystemPackages(),
        InstallToolchain(),
        RegisterTarget(),
        VerifyToolchain(),
        FixEnvironmentContract(),
        InstallEntrypoint(),
    ]
