"""
Models for compile target triples such as 'x86_64-unknown-linux-musl'.
"""
import re
from typing import Optional
from pydantic import BaseModel, ConfigDict

_COMPONENT = re.compile(r'^[a-z0-9_.]+$')


class TargetTriple(BaseModel):
    """
    A compile target: CPU architecture, vendor, operating system and,
    optionally, the libc/ABI variant.
    """
    model_config = ConfigDict(frozen=True)

    arch: str
    vendor: str
    os: str
    env: Optional[str] = None

    @classmethod
    def parse(cls, triple: str) -> "TargetTriple":
        """
        Parses 'arch-vendor-os' or 'arch-vendor-os-env'.

        :param triple: The target triple string.
        :return: A TargetTriple instance.
        :raises ValueError: If the string is not a well-formed triple.
        """
        parts = (triple or "").strip().split("-")
        if len(parts) not in (3, 4):
            raise ValueError(f"Malformed target triple: {triple!r}")
        for part in parts:
            if not _COMPONENT.match(part):
                raise ValueError(f"Malformed target triple: {triple!r}")
        return cls(arch=parts[0], vendor=parts[1], os=parts[2],
                   env=parts[3] if len(parts) == 4 else None)

    @property
    def is_musl(self) -> bool:
        return bool(self.env) and self.env.startswith("musl")

    def __str__(self) -> str:
        parts = [self.arch, self.vendor, self.os]
        if self.env:
            parts.append(self.env)
        return "-".join(parts)
