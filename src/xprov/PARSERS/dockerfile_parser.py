"""
Parser that reads a rendered Dockerfile back into instructions so its
layering can be checked.
"""
import json
import re
import shlex
from typing import List
from ..MODELS.dockerfile_ast import Instruction, DockerfileAST


class DockerfileParser:
    """
    Splits Dockerfile text into normalized instructions.
    """
    def parse(self, dockerfile_path: str) -> List[Instruction]:
        """
        Reads and parses a Dockerfile.

        Args:
            dockerfile_path (str): Path to the Dockerfile.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        with open(dockerfile_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_ast(self, content: str) -> DockerfileAST:
        return DockerfileAST(instructions=self.parse_from_string(content))

    def parse_from_string(self, content: str) -> List[Instruction]:
        """
        Parses Dockerfile text. Comments are dropped, continuation lines
        joined and instruction names upper-cased.

        Args:
            content (str): Content of the Dockerfile.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        instructions = []

        content = re.sub(r'^\s*#.*$', '', content, flags=re.MULTILINE)
        content = re.sub(r'\\[ \t]*\r?\n', ' ', content)

        pattern = re.compile(r'^[ \t]*([A-Za-z]+)[ \t]+(.*)$', re.MULTILINE)

        for match in pattern.finditer(content):
            inst = match.group(1).upper()
            args_str = match.group(2).strip()
            exec_form = False

            if args_str.startswith('[') and args_str.endswith(']'):
                try:
                    args = json.loads(args_str)
                    exec_form = isinstance(args, list) and all(isinstance(a, str) for a in args)
                except json.JSONDecodeError:
                    exec_form = False
                if not exec_form:
                    args = [args_str]
            elif inst in ("ENV", "LABEL"):
                args = self._split_pairs(inst, args_str)
            else:
                args = [args_str]

            instructions.append(Instruction(
                instruction=inst,
                arguments=args,
                raw=match.group(0).strip(),
                exec_form=exec_form,
            ))

        return instructions

    def _split_pairs(self, inst: str, args_str: str) -> List[str]:
        """
        Splits ENV/LABEL arguments into KEY=VALUE items, unquoting values.
        The legacy 'ENV KEY VALUE' form yields [KEY, VALUE].
        """
        try:
            tokens = shlex.split(args_str)
        except ValueError:
            tokens = args_str.split()
        if tokens and all('=' in t for t in tokens):
            return tokens
        if inst == "ENV":
            return args_str.split(None, 1)
        return tokens
