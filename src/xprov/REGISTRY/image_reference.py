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
Base image reference parsing and pin checks.
Parses references like 'ubuntu:18.04' or 'docker.io/library/ubuntu@sha256:...'.
"""

from typing import Optional
from dataclasses import dataclass

from ..errors import RecipeError


@dataclass(frozen=True)
class ImageReference:
    """
    Parsed base image reference.

    Examples:
        - ubuntu:18.04 -> docker.io/library/ubuntu:18.04
        - myuser/builder:v1 -> docker.io/myuser/builder:v1
        - gcr.io/project/image@sha256:abc123... -> gcr.io/project/image@sha256:abc123...

    A reference without a tag or digest is left unpinned (tag None) instead
    of silently becoming ':latest'.
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    FLOATING_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Image reference string (e.g., 'ubuntu:18.04')

        Returns:
            Parsed ImageReference object.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)
            if not digest.startswith("sha256:") or len(digest) <= len("sha256:"):
                raise ValueError(f"Invalid digest in image reference: {digest!r}")

        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1:
            after_colon = reference[last_colon + 1:]
            # localhost:5000/image has a port, not a tag
            if "/" not in after_colon:
                tag = after_colon
                reference = reference[:last_colon]
                if not tag:
                    raise ValueError("Empty tag in image reference")

        parts = reference.split("/")
        if any(not part for part in parts):
            raise ValueError(f"Invalid repository in image reference: {reference!r}")

        if len(parts) == 1:
            registry = cls.DEFAULT_REGISTRY
            repository = f"library/{parts[0]}"
        elif "." in parts[0] or ":" in parts[0] or parts[0] == "localhost":
            registry = parts[0]
            repository = "/".join(parts[1:])
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def is_pinned(self) -> bool:
        """True when the reference names an exact image, never 'latest'."""
        if self.digest:
            return True
        return bool(self.tag) and self.tag != self.FLOATING_TAG

    def require_pinned(self) -> "ImageReference":
        """Return self, or raise RecipeError for a floating reference."""
        if not self.is_pinned:
            raise RecipeError(
                f"Base image {self.short_name!r} is not pinned; "
                "use an explicit version tag or digest"
            )
        return self

    @property
    def distribution(self) -> str:
        """Last path component of the repository, e.g. 'ubuntu'."""
        return self.repository.rsplit("/", 1)[-1]

    @property
    def version(self) -> Optional[str]:
        return self.tag

    @property
    def full_name(self) -> str:
        """Fully qualified name, e.g. 'docker.io/library/ubuntu:18.04'."""
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        if self.tag:
            return f"{name}:{self.tag}"
        return name

    @property
    def short_name(self) -> str:
        """Name as written in a FROM line; Docker Hub names drop the registry."""
        if self.registry != self.DEFAULT_REGISTRY:
            return self.full_name
        repo = self.repository
        if repo.startswith("library/"):
            repo = repo[len("library/"):]
        if self.digest:
            return f"{repo}@{self.digest}"
        if self.tag:
            return f"{repo}:{self.tag}"
        return repo

    @property
    def manifest_reference(self) -> str:
        """The tag or digest used in a registry manifest request."""
        return self.digest or self.tag or self.FLOATING_TAG

    @property
    def registry_url(self) -> str:
        """Base URL of the registry's v2 API."""
        if self.registry == self.DEFAULT_REGISTRY:
            return "https://registry-1.docker.io"
        if self.registry.startswith("localhost"):
            return f"http://{self.registry}"
        return f"https://{self.registry}"

    def __str__(self) -> str:
        return self.short_name

    def __repr__(self) -> str:
        return f"ImageReference({self.full_name})"
