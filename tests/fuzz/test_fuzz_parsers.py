import random
import string
import pytest
from xprov.MODELS.target_triple import TargetTriple
from xprov.PARSERS.dockerfile_parser import DockerfileParser
from xprov.PARSERS.recipe_parser import RecipeParser
from xprov.REGISTRY.image_reference import ImageReference
from xprov.UTILS.string_interpolation import EnvironmentInterpolator
from xprov.errors import RecipeError


def random_string(length):
    return ''.join(random.choice(string.printable) for _ in range(length))


def test_fuzz_dockerfile_parser():
    parser = DockerfileParser()
    for _ in range(100):
        content = random_string(random.randint(0, 1000))
        for inst in parser.parse_from_string(content):
            assert inst.instruction.isupper()


def test_fuzz_recipe_parser():
    parser = RecipeParser(context={})
    for _ in range(100):
        content = random_string(random.randint(0, 1000))
        # Junk must be refused as a recipe error, never crash the parser
        try:
            parser.parse_from_string(content)
        except RecipeError:
            pass


def test_fuzz_interpolation():
    for _ in range(100):
        content = random_string(random.randint(0, 200))
        try:
            EnvironmentInterpolator.interpolate(content, {"HOME": "/root"})
        except KeyError:
            pass


def test_fuzz_references():
    for _ in range(200):
        value = random_string(random.randint(0, 40))
        try:
            ImageReference.parse(value)
        except ValueError:
            pass
        try:
            TargetTriple.parse(value)
        except ValueError:
            pass


def test_edge_cases_parsers():
    dockerfile_parser = DockerfileParser()

    # Empty string
    assert dockerfile_parser.parse_from_string("") == []

    # Only whitespace
    assert dockerfile_parser.parse_from_string("   \n\t  ") == []

    # Very long line
    assert len(dockerfile_parser.parse_from_string("RUN " + "a" * 10000)) == 1

    # Many line continuations
    assert len(dockerfile_parser.parse_from_string("RUN echo \\\n" * 100 + "hello")) == 1

    # Broken exec form falls back to shell form
    inst = dockerfile_parser.parse_from_string('ENTRYPOINT ["/entrypoint.sh"')[0]
    assert not inst.exec_form


@pytest.mark.parametrize("content", ["", "{}", "null", "labels: {}"])
def test_edge_cases_recipes(content):
    RecipeParser(context={}).parse_from_string(content)
