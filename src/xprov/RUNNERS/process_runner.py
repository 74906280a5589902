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
Execution of system processes: one-shot provisioning commands and the
long-running orchestrator process.
"""
import subprocess
import os
import sys
from dataclasses import dataclass
from typing import List, Dict, Optional

import psutil

from ..errors import CommandError

# Exit status reported when a command cannot be found, as a shell would
COMMAND_NOT_FOUND = 127


@dataclass
class CommandResult:
    """Outcome of a finished command."""
    command: List[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return (self.stdout + self.stderr).strip()


class CommandRunner:
    """
    Runs provisioning commands to completion, one at a time.
    """
    def __init__(self, name: str = "xprov", quiet: bool = False):
        """
        Args:
            name (str): Prefix for progress lines.
            quiet (bool): Do not echo commands.
        """
        self.name = name
        self.quiet = quiet

    def run(self,
            command: List[str],
            env: Optional[Dict[str, str]] = None,
            cwd: Optional[str] = None,
            check: bool = True) -> CommandResult:
        """
        Runs a command and captures its output.

        Args:
            command (List[str]): Command and arguments to execute.
            env (Optional[Dict[str, str]]): Complete environment for the command.
            cwd (Optional[str]): Directory to run the command in.
            check (bool): Raise CommandError on a non-zero exit.

        Returns:
            CommandResult: The exit status and captured output.
        """
        if not self.quiet:
            print(f"[{self.name}] $ {' '.join(command)}")

        try:
            completed = subprocess.run(
                command,
                env=env,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                # Avoid shell=True for security reasons (CWE-78)
                shell=False,
            )
            result = CommandResult(command, completed.returncode, completed.stdout, completed.stderr)
        except FileNotFoundError as e:
            result = CommandResult(command, COMMAND_NOT_FOUND, "", str(e))

        if check and not result.ok:
            raise CommandError(command, result.returncode, result.output)
        return result


class ProcessRunner:
    """
    Manages the execution of a single long-running process and its children.
    """
    def __init__(self, name: str):
        """
        Initializes the process runner.

        Args:
            name (str): Identifier for the process.
        """
        self.name = name
        self.process = None

    def start(self,
              command: List[str],
              env: Dict[str, str],
              working_dir: Optional[str] = None):
        """
        Starts the process with inherited stdout/stderr.

        Args:
            command (List[str]): Command and arguments to execute.
            env (Dict[str, str]): Environment variables for the process.
            working_dir (Optional[str]): Directory to start the process in.
        """
        if working_dir and not os.path.isdir(working_dir):
            working_dir = None

        print(f"[{self.name}] Starting command: {' '.join(command)}")
        sys.stdout.flush()
        self.process = subprocess.Popen(
            command,
            env=env,
            cwd=working_dir,
            shell=False,
        )

    def wait(self) -> int:
        """
        Waits for the process to exit. Interrupting the wait stops the
        whole process tree and re-raises.

        Returns:
            int: The exit code.
        """
        try:
            return self.process.wait()
        except (KeyboardInterrupt, SystemExit):
            self.stop()
            raise

    def stop(self, timeout: int = 10):
        """
        Terminates the process and every descendant, killing what survives.

        Args:
            timeout (int): Seconds to wait for termination before killing.
        """
        if not self.process or self.process.poll() is not None:
            return
        print(f"[{self.name}] Stopping process tree...")
        try:
            parent = psutil.Process(self.process.pid)
            procs = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        for proc in procs:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                continue
        _, alive = psutil.wait_procs(procs, timeout=timeout)
        for proc in alive:
            print(f"[{self.name}] Process {proc.pid} did not terminate, killing...")
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                continue
        self.process.wait()
