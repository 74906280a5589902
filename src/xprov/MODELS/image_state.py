"""
Models persisted inside a provisioned root: the provisioning record and the
image configuration read by the entry executor.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel


class ImageState(BaseModel):
    """
    What has been provisioned into a root, and with which inputs.

    ``fingerprints`` maps a step name to the chained fingerprint it completed
    with; a later run skips a step only while its fingerprint still matches.
    """
    base_image: Optional[str] = None
    base_digest: Optional[str] = None
    fingerprints: Dict[str, str] = {}
    packages: List[str] = []
    toolchain_channel: Optional[str] = None
    toolchain_versions: Dict[str, str] = {}
    targets: List[str] = []
    entrypoint: Optional[str] = None
    complete: bool = False
    failed_step: Optional[str] = None

    def has_completed(self, step_name: str) -> bool:
        return step_name in self.fingerprints

    def invalidate_from(self, step_names: List[str]) -> None:
        """Forget the given steps, e.g. everything after a changed layer."""
        for name in step_names:
            self.fingerprints.pop(name, None)


class ImageConfig(BaseModel):
    """
    Runtime configuration of a provisioned root.
    Equivalent to the config section of a container image.
    """
    entrypoint: List[str]
    cmd: List[str] = []
    env: Dict[str, str] = {}
    labels: Dict[str, str] = {}
    working_dir: Optional[str] = None
