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
Converter that renders a provisioning recipe as a layered Dockerfile, so a
layered image builder can cache each provisioning step as its own layer.
"""
import json
import os
import re
import shlex
from typing import List
from jinja2 import Template

from .. import __version__
from ..BUILDERS.steps import InstallEntrypoint
from ..MANAGERS.package_manager import PackageManager
from ..MANAGERS.toolchain_manager import (
    ToolchainManager, MANAGER_BINARY, COMPILER_BINARY, BUILD_TOOL_BINARY,
)
from ..MODELS.dockerfile_ast import DockerfileAST
from ..MODELS.env_contract import CONTRACT_VARIABLES
from ..MODELS.recipe import ProvisioningRecipe
from ..PARSERS.dockerfile_parser import DockerfileParser
from ..REGISTRY.image_reference import ImageReference
from ..errors import ProvisioningOrderError

ENTRYPOINT_CONTEXT_NAME = "entrypoint.sh"
INSTALLER_PATH = "/tmp/rustup-init.sh"

DOCKERFILE_TEMPLATE = """\
# Generated by xprov {{ version }}
FROM {{ base_image }}

{% for key, value in labels %}
LABEL {{ key }}={{ value }}
{% endfor %}

ENV {{ env | join(" \\\\\\n    ") }}

ARG DEBIAN_FRONTEND=noninteractive

RUN {{ packages_run }}

RUN {{ toolchain_run }}

RUN {{ target_run }}

WORKDIR {{ build_dir }}
RUN mkdir -p {{ output_dir }}

COPY {{ entrypoint_source }} {{ entrypoint_path }}
RUN chmod 0755 {{ entrypoint_path }}
ENTRYPOINT {{ entrypoint }}
"""

_BARE_VALUE = re.compile(r'^[A-Za-z0-9_./:@%+,=-]+$')


def _quote(value: str, force: bool = False) -> str:
    """Double-quotes a Dockerfile ENV/LABEL value when it needs it."""
    if not force and _BARE_VALUE.match(value):
        return value
    return '"' + value.replace('\\', '\\\\').replace('"', '\\"') + '"'


def _chain(commands: List[str]) -> str:
    return " \\\n    && ".join(commands)


class DockerfileConverter:
    """
    Renders and lints the Dockerfile equivalent of a recipe.
    """

    def __init__(self, recipe: ProvisioningRecipe):
        """
        Initializes the Dockerfile converter.

        :param recipe: The validated recipe.
        """
        self.recipe = recipe
        self.template = Template(DOCKERFILE_TEMPLATE, trim_blocks=True, keep_trailing_newline=True)
        self.parser = DockerfileParser()

    def _packages_run(self) -> str:
        commands = PackageManager.install_commands(self.recipe.system_packages)
        return _chain([shlex.join(c) for c in commands])

    def _toolchain_run(self) -> str:
        spec = self.recipe.toolchain
        commands = [
            shlex.join([spec.linker, "--version"]) + " > /dev/null",
            shlex.join(["curl", "--proto", "=https", "--tlsv1.2", "-sSf",
                        spec.installer_url, "-o", INSTALLER_PATH]),
        ]
        if spec.installer_sha256:
            commands.append(f"echo {shlex.quote(spec.installer_sha256 + '  ' + INSTALLER_PATH)} "
                            "| sha256sum -c -")
        commands.append(shlex.join(["sh", INSTALLER_PATH] +
                                   ToolchainManager.installer_args(spec.channel, spec.profile)))
        commands.append(shlex.join(["rm", "-f", INSTALLER_PATH]))
        return _chain(commands)

    def _target_run(self) -> str:
        target = self.recipe.target
        commands = [shlex.join(ToolchainManager.add_target_command(target))]
        for binary in (MANAGER_BINARY, BUILD_TOOL_BINARY, COMPILER_BINARY, self.recipe.toolchain.linker):
            commands.append(shlex.join([binary, "--version"]))
        commands.append(f"{MANAGER_BINARY} target list --installed | grep -qx {shlex.quote(target)}")
        return _chain(commands)

    def render(self) -> str:
        """
        Renders the Dockerfile text. The same recipe always renders the same text.
        """
        recipe = self.recipe
        contract = recipe.contract
        return self.template.render(
            version=__version__,
            base_image=recipe.base_image,
            labels=[(key, _quote(value, force=True)) for key, value in recipe.labels.items()],
            env=[f"{key}={_quote(value)}" for key, value in contract.as_environ().items()],
            packages_run=self._packages_run(),
            toolchain_run=self._toolchain_run(),
            target_run=self._target_run(),
            build_dir=contract.build_dir,
            output_dir=shlex.quote(contract.output_dir),
            entrypoint_source=ENTRYPOINT_CONTEXT_NAME,
            entrypoint_path=recipe.entrypoint.path,
            entrypoint=json.dumps([recipe.entrypoint.path]),
        )

    def check_layering(self, content: str) -> DockerfileAST:
        """
        Parses rendered text back and checks the layer invariants: one pinned
        FROM first, packages before toolchain before target, the full
        contract in ENV, one exec-form ENTRYPOINT and no CMD.

        :raises ProvisioningOrderError: If an invariant does not hold.
        """
        ast = self.parser.parse_ast(content)

        def fail(message):
            raise ProvisioningOrderError(message, step="render")

        froms = ast.find_all("FROM")
        if len(froms) != 1 or not ast.instructions or ast.instructions[0].instruction != "FROM":
            fail("Dockerfile must start with exactly one FROM")
        try:
            pinned = ImageReference.parse(froms[0].text).is_pinned
        except ValueError:
            pinned = False
        if not pinned:
            fail(f"FROM {froms[0].text} is not pinned")

        packages = ast.index_of("RUN", "apt-get install")
        toolchain = ast.index_of("RUN", "--default-toolchain")
        target = ast.index_of("RUN", "target add")
        if packages is None or toolchain is None or target is None:
            fail("Dockerfile is missing a packages, toolchain or target layer")
        if not packages < toolchain < target:
            fail("Layers must install packages, then the toolchain, then the target")

        declared = set()
        for inst in ast.find_all("ENV"):
            declared.update(arg.split("=", 1)[0] for arg in inst.arguments)
        missing = [name for _, name in CONTRACT_VARIABLES if name not in declared]
        if missing:
            fail(f"ENV is missing contract variables: {', '.join(missing)}")

        if ast.find_all("CMD"):
            fail("Dockerfile must not declare CMD")
        entrypoints = ast.find_all("ENTRYPOINT")
        if len(entrypoints) != 1 or not entrypoints[0].exec_form:
            fail("Dockerfile must declare exactly one exec-form ENTRYPOINT")
        return ast

    def convert(self, output_dir: str = ".") -> str:
        """
        Writes the Dockerfile and the entry point script into a build context.

        :param output_dir: The build context directory.
        :return: The path of the Dockerfile.
        """
        content = self.render()
        self.check_layering(content)

        os.makedirs(output_dir, exist_ok=True)
        dockerfile_path = os.path.join(output_dir, "Dockerfile")
        with open(dockerfile_path, "w") as f:
            f.write(content)

        script_path = os.path.join(output_dir, ENTRYPOINT_CONTEXT_NAME)
        with open(script_path, "wb") as f:
            f.write(InstallEntrypoint.script_content(self.recipe))
        os.chmod(script_path, 0o755)

        print(f"Dockerfile and {ENTRYPOINT_CONTEXT_NAME} generated in {output_dir}")
        return dockerfile_path
