"""
Utilities for addressing image paths inside a provisioned root.
"""
import os
import posixpath

STATE_FILE = "/var/lib/xprov/state.json"
CONTRACT_FILE = "/etc/xprov/contract.env"
IMAGE_CONFIG_FILE = "/etc/xprov/image.json"
OS_RELEASE_FILE = "/etc/os-release"


def in_root(root: str, image_path: str) -> str:
    """
    Maps an absolute image path onto the host path under `root`.

    :param root: Host directory that holds the image filesystem ('/' in-place).
    :param image_path: Absolute path as seen from inside the image.
    :return: The host path.
    """
    normalized = posixpath.normpath("/" + image_path.lstrip("/"))
    if normalized == "/":
        return os.path.abspath(root)
    return os.path.join(os.path.abspath(root), normalized.lstrip("/"))


def read_os_release(path: str) -> dict:
    """
    Parses an os-release file into a dictionary; missing file gives {}.
    """
    if not os.path.exists(path):
        return {}
    release = {}
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#') or '=' not in line:
                continue
            key, value = line.split('=', 1)
            release[key] = value.strip().strip('"').strip("'")
    return release
