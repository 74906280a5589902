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
Registry client that resolves a pinned base image to its manifest digest.
Implements the manifest part of the Docker Registry HTTP API V2.
"""

import base64
import hashlib
import json
from typing import Optional, Dict, Tuple
from dataclasses import dataclass
from urllib.request import urlopen, Request
from http.client import HTTPException
from urllib.error import HTTPError
from urllib.parse import urlencode

from .image_reference import ImageReference
from ..errors import UnresolvablePinError

MANIFEST_MEDIA_TYPES = (
    "application/vnd.docker.distribution.manifest.v2+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.oci.image.index.v1+json",
)


@dataclass
class RegistryAuth:
    """Authentication credentials for a registry."""

    username: Optional[str] = None
    password: Optional[str] = None


class RegistryClient:
    """
    Resolves image references against Docker Hub or an OCI-compatible registry.

    Resolution never retries: a missing manifest is a configuration error and
    an unreachable registry aborts provisioning just the same.
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._auth_tokens: Dict[str, str] = {}
        self._credentials: Dict[str, RegistryAuth] = {}

    def set_credentials(self, registry: str, username: str, password: str) -> None:
        """
        Set credentials for a registry.

        Args:
            registry: Registry hostname (e.g., 'docker.io')
            username: Username
            password: Password or access token
        """
        self._credentials[registry] = RegistryAuth(username=username, password=password)

    def _basic_auth(self, registry: str) -> Optional[str]:
        creds = self._credentials.get(registry)
        if creds and creds.username and creds.password:
            auth = base64.b64encode(f"{creds.username}:{creds.password}".encode()).decode()
            return f"Basic {auth}"
        return None

    def _get_auth_token(self, ref: ImageReference) -> Optional[str]:
        """Get the Authorization header value for a repository."""
        cache_key = f"{ref.registry}/{ref.repository}"
        if cache_key in self._auth_tokens:
            return self._auth_tokens[cache_key]

        if ref.registry != ImageReference.DEFAULT_REGISTRY:
            return self._basic_auth(ref.registry)

        params = {
            "service": "registry.docker.io",
            "scope": f"repository:{ref.repository}:pull",
        }
        request = Request(f"https://auth.docker.io/token?{urlencode(params)}")
        basic = self._basic_auth(ref.registry)
        if basic:
            request.add_header("Authorization", basic)

        try:
            with urlopen(request, timeout=self.timeout) as response:
                data = json.loads(response.read().decode())
            token = f"Bearer {data['token']}"
        except (OSError, HTTPException, ValueError, KeyError, TypeError) as e:
            raise UnresolvablePinError(
                f"Could not authenticate against {ref.registry}: {e!r}", step="pin"
            ) from e

        self._auth_tokens[cache_key] = token
        return token

    def _fetch_manifest(self, ref: ImageReference) -> Tuple[bytes, Dict[str, str]]:
        url = f"{ref.registry_url}/v2/{ref.repository}/manifests/{ref.manifest_reference}"
        request = Request(url)
        token = self._get_auth_token(ref)
        if token:
            request.add_header("Authorization", token)
        request.add_header("Accept", ", ".join(MANIFEST_MEDIA_TYPES))

        with urlopen(request, timeout=self.timeout) as response:
            return response.read(), dict(response.headers)

    def resolve_digest(self, ref: ImageReference) -> str:
        """
        Resolve a reference to the digest of its manifest.

        :param ref: The pinned base image reference.
        :return: A 'sha256:...' digest.
        :raises UnresolvablePinError: If the manifest does not exist or the
            registry cannot be reached.
        """
        try:
            content, headers = self._fetch_manifest(ref)
        except HTTPError as e:
            # Docker Hub answers 401 for repositories that do not exist
            if e.code in (401, 404):
                raise UnresolvablePinError(
                    f"Base image {ref.short_name} does not exist in {ref.registry}", step="pin"
                ) from e
            raise UnresolvablePinError(
                f"Registry {ref.registry} rejected manifest request for {ref.short_name}: "
                f"HTTP {e.code}",
                step="pin",
            ) from e
        except (OSError, HTTPException) as e:
            # URLError, timeouts and dropped connections
            reason = getattr(e, "reason", None) or repr(e)
            raise UnresolvablePinError(
                f"Registry {ref.registry} is unreachable: {reason}", step="pin"
            ) from e

        digest = None
        for key, value in headers.items():
            if key.lower() == "docker-content-digest":
                digest = value
                break
        if not digest:
            digest = "sha256:" + hashlib.sha256(content).hexdigest()

        if ref.digest and ref.digest != digest:
            raise UnresolvablePinError(
                f"Base image {ref.short_name} resolved to {digest}, not the pinned digest",
                step="pin",
            )
        return digest
