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
Parsers for provisioning recipe YAML files.
"""
import os
import yaml
from dotenv import dotenv_values
from pydantic import ValidationError
from typing import Dict, Any, List, Optional
from ..MODELS.recipe import ProvisioningRecipe
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..errors import RecipeError


class RecipeParser:
    """
    Parser for xprov.yml recipe files.

    Example::

        base_image: ubuntu:18.04
        toolchain:
          channel: nightly
        target: x86_64-unknown-linux-musl
    """
    def __init__(self, context: Optional[Dict[str, str]] = None, env_files: Optional[List[str]] = None):
        """
        Initializes the parser with an interpolation context.

        :param context: Variables for interpolation, defaults to the process environment.
        :param env_files: .env files layered over the context; later files win.
        """
        self.context = dict(os.environ) if context is None else dict(context)
        for env_file in env_files or []:
            if not os.path.exists(env_file):
                raise RecipeError(f"Env file {env_file} not found")
            values = dotenv_values(env_file)
            self.context.update({k: v for k, v in values.items() if v is not None})

    def parse(self, recipe_path: str) -> ProvisioningRecipe:
        """
        Parses a recipe file from a path.

        :param recipe_path: Path to the recipe file.
        :return: The validated recipe.
        """
        with open(recipe_path, 'r') as f:
            content = f.read()
        recipe = self.parse_from_string(content)

        # A relative entrypoint source is relative to the recipe file
        source = recipe.entrypoint.source
        if source and not os.path.isabs(source):
            base_dir = os.path.dirname(os.path.abspath(recipe_path))
            recipe.entrypoint.source = os.path.join(base_dir, source)
        return recipe

    def parse_from_string(self, content: str) -> ProvisioningRecipe:
        """
        Parses a recipe from a string.

        :param content: YAML content of the recipe.
        :return: The validated recipe.
        :raises RecipeError: On interpolation, YAML or validation errors.
        """
        try:
            content = EnvironmentInterpolator.interpolate(content, self.context)
        except KeyError as e:
            raise RecipeError(f"Recipe interpolation failed: {e.args[0]}") from e

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise RecipeError(f"Recipe is not valid YAML: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise RecipeError("Recipe must be a mapping")

        return self.from_dict(data)

    def from_dict(self, data: Dict[str, Any]) -> ProvisioningRecipe:
        """
        Validates a recipe mapping.

        :param data: Recipe keys; anything missing takes its default.
        :return: The validated recipe.
        """
        data = dict(data)
        # YAML reads '18.04'-style values and 1/0 flags loosely
        if "labels" in data and isinstance(data["labels"], dict):
            data["labels"] = {str(k): str(v) for k, v in data["labels"].items()}
        if "system_packages" in data and isinstance(data["system_packages"], str):
            data["system_packages"] = data["system_packages"].split()

        try:
            return ProvisioningRecipe(**data)
        except ValidationError as e:
            raise RecipeError(f"Invalid recipe:\n{e}") from e
        except TypeError as e:
            raise RecipeError(f"Invalid recipe: {e}") from e
