"""
The provisioner: runs the ordered step pipeline against an image root.
"""
import json
import os
from typing import List, Optional

from pydantic import ValidationError

from .steps import ProvisioningContext, ProvisioningStep, default_steps
from ..MODELS.image_state import ImageState
from ..MODELS.recipe import ProvisioningRecipe
from ..REGISTRY.registry_client import RegistryClient
from ..RUNNERS.process_runner import CommandRunner
from ..UTILS.rootfs import STATE_FILE, in_root
from ..errors import ProvisioningOrderError


class Provisioner:
    """
    Provisions a build image root from a recipe.

    Steps run strictly in order and the first failure aborts the run: the
    root is then marked incomplete and nothing is retried. Steps whose
    chained fingerprint is unchanged, and whose work is still present, are
    reused like cached image layers.
    """
    def __init__(self,
                 recipe: ProvisioningRecipe,
                 root: str = "/",
                 runner: Optional[CommandRunner] = None,
                 registry: Optional[RegistryClient] = None,
                 steps: Optional[List[ProvisioningStep]] = None,
                 use_cache: bool = True):
        """
        Initializes the Provisioner.

        :param recipe: The validated recipe.
        :param root: Host directory holding the image filesystem.
        :param runner: Command runner, a fresh CommandRunner by default.
        :param registry: Resolves the base image pin; None skips resolution.
        :param steps: Step pipeline, the default seven steps when omitted.
        :param use_cache: Reuse completed steps from a previous run.
        """
        self.recipe = recipe
        self.root = root
        self.runner = runner or CommandRunner("xprov")
        self.registry = registry
        self.steps = default_steps() if steps is None else list(steps)
        self.use_cache = use_cache
        self.state_path = in_root(root, STATE_FILE)

    def validate_order(self):
        """
        Checks that every step comes after the steps it requires.

        :raises ProvisioningOrderError: On a misordered or duplicated step.
        """
        seen = []
        for step in self.steps:
            if step.name in seen:
                raise ProvisioningOrderError(f"Step '{step.name}' appears twice", step=step.name)
            for required in step.requires:
                if required not in seen:
                    raise ProvisioningOrderError(
                        f"Step '{required}' must run before '{step.name}'", step=step.name
                    )
            seen.append(step.name)

    def load_state(self) -> ImageState:
        return read_state(self.root)

    def save_state(self, state: ImageState):
        os.makedirs(os.path.dirname(self.state_path), exist_ok=True)
        tmp_path = self.state_path + ".tmp"
        with open(tmp_path, 'w') as f:
            f.write(state.model_dump_json(indent=2))
        os.replace(tmp_path, self.state_path)

    def provision(self) -> ImageState:
        """
        Runs the pipeline.

        :return: The final image state, marked complete.
        :raises XprovError: The first step failure, after the state is saved.
            Any other exception is recorded the same way and re-raised.
        """
        self.validate_order()

        state = self.load_state()
        state.complete = False
        state.failed_step = None
        self.save_state(state)

        ctx = ProvisioningContext(
            recipe=self.recipe,
            root=self.root,
            runner=self.runner,
            state=state,
            registry=self.registry,
        )

        parent = ""
        for index, step in enumerate(self.steps):
            try:
                fingerprint = step.fingerprint(self.recipe, parent)
                if self._is_cached(step, fingerprint, ctx):
                    print(f"[{step.name}] Using cache")
                else:
                    print(f"[{step.name}] Running")
                    step.run(ctx)
                    state.fingerprints[step.name] = fingerprint
                    self.save_state(state)
            except Exception:
                state.failed_step = step.name
                state.invalidate_from([s.name for s in self.steps[index:]])
                self.save_state(state)
                raise
            parent = fingerprint

        state.complete = True
        self.save_state(state)
        print(f"[xprov] Provisioned {self.recipe.base_image} for {self.recipe.target}")
        return state

    def _is_cached(self, step: ProvisioningStep, fingerprint: str, ctx: ProvisioningContext) -> bool:
        if not (self.use_cache and step.cacheable):
            return False
        if ctx.state.fingerprints.get(step.name) != fingerprint:
            return False
        return step.is_satisfied(ctx)


def read_state(root: str) -> ImageState:
    """
    Reads the provisioning record of `root`; an absent or unreadable record
    reads as a fresh, empty state.
    """
    state_path = in_root(root, STATE_FILE)
    if not os.path.exists(state_path):
        return ImageState()
    try:
        with open(state_path, 'r') as f:
            return ImageState(**json.load(f))
    except (json.JSONDecodeError, ValidationError, TypeError) as e:
        print(f"[xprov] Ignoring unreadable state {state_path}: {e}")
        return ImageState()
