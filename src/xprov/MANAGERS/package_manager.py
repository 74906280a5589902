"""
System package installation through apt.
"""
from typing import Dict, List

from ..RUNNERS.process_runner import CommandRunner

INSTALLED_STATUS = "install ok installed"


class PackageManager:
    """
    Installs a fixed package set with apt-get, skipping the work entirely
    when every package is already installed.
    """
    def __init__(self, runner: CommandRunner, env: Dict[str, str]):
        """
        :param runner: Runs apt and dpkg commands.
        :param env: Environment for every package command.
        """
        self.runner = runner
        self.env = dict(env)
        self.env.setdefault("DEBIAN_FRONTEND", "noninteractive")

    @staticmethod
    def package_name(spec: str) -> str:
        """'musl-dev=1.1.19-1' -> 'musl-dev'"""
        return spec.split("=", 1)[0]

    def is_installed(self, package: str) -> bool:
        result = self.runner.run(
            ["dpkg-query", "-W", "-f=${Status}", self.package_name(package)],
            env=self.env,
            check=False,
        )
        return result.ok and INSTALLED_STATUS in result.stdout

    def missing(self, packages: List[str]) -> List[str]:
        """
        Returns the packages that are not installed, in the given order.
        """
        return [p for p in packages if not self.is_installed(p)]

    @staticmethod
    def install_commands(packages: List[str]) -> List[List[str]]:
        """
        The command sequence that installs `packages` from a fresh index.
        """
        return [
            ["apt-get", "update"],
            ["apt-get", "install", "-y"] + list(packages),
            ["apt-get", "clean", "-y"],
        ]

    def install(self, packages: List[str]) -> bool:
        """
        Installs the package set.

        :param packages: The full package set, in install order.
        :return: False when everything was already installed.
        :raises CommandError: If any apt command fails.
        """
        missing = self.missing(packages)
        if not missing:
            print(f"[{self.runner.name}] All {len(packages)} packages already installed")
            return False
        print(f"[{self.runner.name}] Installing {', '.join(missing)}")
        for command in self.install_commands(packages):
            self.runner.run(command, env=self.env)
        return True
