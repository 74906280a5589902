"""
Models for the Dockerfile Abstract Syntax Tree.
"""
from typing import List, Optional
from pydantic import BaseModel


class Instruction(BaseModel):
    """
    Represents a single instruction in a Dockerfile.
    """
    instruction: str
    arguments: List[str]
    raw: str
    exec_form: bool = False

    @property
    def text(self) -> str:
        """Arguments joined back into one string."""
        return " ".join(self.arguments)


class DockerfileAST(BaseModel):
    """
    Represents the complete Abstract Syntax Tree of a Dockerfile.
    """
    instructions: List[Instruction] = []

    def find_all(self, name: str) -> List[Instruction]:
        return [i for i in self.instructions if i.instruction == name]

    def index_of(self, name: str, contains: str) -> Optional[int]:
        """
        Position of the first `name` instruction whose text contains `contains`.
        """
        for index, inst in enumerate(self.instructions):
            if inst.instruction == name and contains in inst.text:
                return index
        return None
