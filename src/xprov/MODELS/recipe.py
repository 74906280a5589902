"""
Models for provisioning recipes: the pinned inputs of one build image.
"""
import posixpath
import re
from typing import List, Dict, Optional
from pydantic import BaseModel, Field, field_validator

from .env_contract import EnvironmentContract
from .target_triple import TargetTriple
from ..REGISTRY.image_reference import ImageReference
from ..errors import RecipeError

DEFAULT_BASE_IMAGE = "ubuntu:18.04"
DEFAULT_TARGET = "x86_64-unknown-linux-musl"
DEFAULT_BASE_PATH = "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin"

# Compiler, linker, pkg-config, and the musl compiler wrapper, libs and headers.
# curl fetches the toolchain installer.
DEFAULT_SYSTEM_PACKAGES = [
    "curl",
    "build-essential",
    "pkg-config",
    "musl",
    "musl-tools",
    "musl-dev",
]

DEFAULT_LABELS = {
    "name": "rust-musl",
    "version": "0.1.0",
    "com.github.actions.name": "Rust MUSL Builder",
    "com.github.actions.description": "Provides a Rust MUSL environment",
    "com.github.actions.icon": "settings",
    "com.github.actions.color": "orange",
}

FLOATING_CHANNELS = ("nightly", "beta", "stable")

_PACKAGE_NAME = re.compile(r'^[a-z0-9][a-z0-9+.\-]*(:[a-z0-9\-]+)?(=\S+)?$')
_CHANNEL = re.compile(r'^[A-Za-z0-9][A-Za-z0-9.\-_]*$')
_SHA256 = re.compile(r'^[0-9a-f]{64}$')


def _absolute(value: str) -> str:
    if not value or not posixpath.isabs(value):
        raise ValueError(f"must be an absolute path, got {value!r}")
    return posixpath.normpath(value)


class ToolchainSpec(BaseModel):
    """
    Where the toolchain manager comes from and which channel it installs.
    """
    installer_url: str = "https://sh.rustup.rs"
    installer_sha256: Optional[str] = None
    channel: str = "nightly"
    profile: Optional[str] = None
    linker: str = "cc"

    @field_validator("installer_url")
    @classmethod
    def _https_only(cls, value: str) -> str:
        if not value.startswith("https://"):
            raise ValueError("installer_url must be an https:// URL")
        return value

    @field_validator("installer_sha256")
    @classmethod
    def _sha256(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            value = value.lower()
            if not _SHA256.match(value):
                raise ValueError("installer_sha256 must be 64 hex characters")
        return value

    @field_validator("channel")
    @classmethod
    def _channel(cls, value: str) -> str:
        if not _CHANNEL.match(value):
            raise ValueError(f"invalid toolchain channel {value!r}")
        return value

    @property
    def is_floating(self) -> bool:
        """True for moving channels such as 'nightly' or 'stable'."""
        return self.channel in FLOATING_CHANNELS


class EnvironmentSpec(BaseModel):
    """
    Paths and flags the environment contract is derived from.
    """
    build_dir: str = "/build"
    output_dir: str = "/output"
    backtrace: bool = True
    rustup_home: str = "/usr/local/rustup"
    cargo_home: str = "/usr/local/cargo"
    prefix: str = "/toolchain"
    base_path: str = DEFAULT_BASE_PATH

    @field_validator("build_dir", "output_dir", "rustup_home", "cargo_home", "prefix")
    @classmethod
    def _paths(cls, value: str) -> str:
        return _absolute(value)


class EntrypointSpec(BaseModel):
    """
    The orchestrator script and the fixed path it is installed at.
    """
    path: str = "/entrypoint.sh"
    source: Optional[str] = None

    @field_validator("path")
    @classmethod
    def _path(cls, value: str) -> str:
        return _absolute(value)


class ProvisioningRecipe(BaseModel):
    """
    Complete, validated input of a provisioning run.
    """
    base_image: str = DEFAULT_BASE_IMAGE
    system_packages: List[str] = Field(default_factory=lambda: list(DEFAULT_SYSTEM_PACKAGES))
    toolchain: ToolchainSpec = Field(default_factory=ToolchainSpec)
    target: str = DEFAULT_TARGET
    environment: EnvironmentSpec = Field(default_factory=EnvironmentSpec)
    entrypoint: EntrypointSpec = Field(default_factory=EntrypointSpec)
    labels: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_LABELS))

    @field_validator("base_image")
    @classmethod
    def _pinned(cls, value: str) -> str:
        try:
            ImageReference.parse(value).require_pinned()
        except RecipeError as e:
            raise ValueError(str(e)) from e
        return value.strip()

    @field_validator("system_packages")
    @classmethod
    def _packages(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("system_packages must not be empty")
        packages = []
        for name in value:
            if not _PACKAGE_NAME.match(name):
                raise ValueError(f"invalid package name {name!r}")
            if name not in packages:
                packages.append(name)
        return packages

    @field_validator("target")
    @classmethod
    def _target(cls, value: str) -> str:
        return str(TargetTriple.parse(value))

    @property
    def image_reference(self) -> ImageReference:
        return ImageReference.parse(self.base_image)

    @property
    def target_triple(self) -> TargetTriple:
        return TargetTriple.parse(self.target)

    @property
    def contract(self) -> EnvironmentContract:
        """The environment contract this recipe fixes."""
        env = self.environment
        cargo_bin = env.cargo_home.rstrip("/") + "/bin"
        path_entries = [cargo_bin] + [p for p in env.base_path.split(":") if p and p != cargo_bin]
        return EnvironmentContract(
            build_dir=env.build_dir,
            output_dir=env.output_dir,
            backtrace=env.backtrace,
            rustup_home=env.rustup_home,
            cargo_home=env.cargo_home,
            path=":".join(path_entries),
            prefix=env.prefix,
            build_target=self.target,
        )
