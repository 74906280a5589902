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
Error taxonomy for provisioning and for running a provisioned image.

Every provisioning failure is fatal: nothing here is meant to be caught and
retried. The CLI turns these into a non-zero exit.
"""
from typing import List, Optional


class XprovError(Exception):
    """Base class for all xprov errors."""


class RecipeError(XprovError):
    """The recipe is malformed or violates a pinning rule."""


class CommandError(XprovError):
    """
    A command exited with a non-zero status or could not be started.
    """

    def __init__(self, command: List[str], returncode: int, output: str = ""):
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        message = f"Command {' '.join(self.command)!r} exited with status {returncode}"
        if output.strip():
            message += f"\n{output.rstrip()}"
        super().__init__(message)


class ProvisioningError(XprovError):
    """
    A provisioning step failed. Carries the name of the failing step.
    """

    def __init__(self, message: str, step: Optional[str] = None):
        self.step = step
        if step:
            message = f"[{step}] {message}"
        super().__init__(message)


class UnresolvablePinError(ProvisioningError):
    """The base image reference does not exist or cannot be resolved."""


class PackageInstallError(ProvisioningError):
    """A system package could not be installed."""


class ToolchainInstallError(ProvisioningError):
    """The toolchain installer could not be fetched or exited non-zero."""


class TargetRegistrationError(ProvisioningError):
    """The compile target is unknown to the installed toolchain manager."""


class ToolchainVerificationError(ProvisioningError):
    """A toolchain binary did not answer its version query."""


class ProvisioningOrderError(ProvisioningError):
    """A step ran before the steps it depends on."""


class ImageIncompleteError(XprovError):
    """The provisioned root never finished provisioning and must not be run."""
