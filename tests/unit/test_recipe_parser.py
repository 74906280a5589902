"""
Unit tests for recipe parsing and interpolation.
"""
import pytest
from xprov.PARSERS.recipe_parser import RecipeParser
from xprov.UTILS.string_interpolation import EnvironmentInterpolator
from xprov.errors import RecipeError

RECIPE = """
base_image: ubuntu:18.04
system_packages:
  - curl
  - build-essential
toolchain:
  channel: ${CHANNEL:-nightly}
target: ${TARGET}
labels:
  version: 1.0
"""


def test_parse_recipe():
    parser = RecipeParser(context={"TARGET": "aarch64-unknown-linux-musl"})
    recipe = parser.parse_from_string(RECIPE)
    assert recipe.base_image == "ubuntu:18.04"
    assert recipe.system_packages == ["curl", "build-essential"]
    assert recipe.toolchain.channel == "nightly"
    assert recipe.target == "aarch64-unknown-linux-musl"
    assert recipe.labels == {"version": "1.0"}
    assert recipe.contract.build_target == "aarch64-unknown-linux-musl"


def test_unset_variable_is_an_error():
    with pytest.raises(RecipeError):
        RecipeParser(context={}).parse_from_string(RECIPE)


def test_empty_recipe_takes_defaults():
    recipe = RecipeParser(context={}).parse_from_string("")
    assert recipe.base_image == "ubuntu:18.04"
    assert recipe.target == "x86_64-unknown-linux-musl"


def test_package_string_is_split():
    recipe = RecipeParser(context={}).from_dict({"system_packages": "curl musl-tools"})
    assert recipe.system_packages == ["curl", "musl-tools"]


def test_unpinned_base_image_is_a_recipe_error():
    with pytest.raises(RecipeError) as excinfo:
        RecipeParser(context={}).parse_from_string("base_image: ubuntu:latest\n")
    assert "not pinned" in str(excinfo.value)


def test_not_a_mapping():
    with pytest.raises(RecipeError):
        RecipeParser(context={}).parse_from_string("- a\n- b\n")


def test_invalid_yaml():
    with pytest.raises(RecipeError):
        RecipeParser(context={}).parse_from_string("toolchain: [nightly\n")


def test_env_file(tmp_path):
    env_file = tmp_path / "ci.env"
    env_file.write_text("TARGET=armv7-unknown-linux-musleabihf\nCHANNEL=stable\n")
    parser = RecipeParser(context={}, env_files=[str(env_file)])
    recipe = parser.parse_from_string(RECIPE)
    assert recipe.target == "armv7-unknown-linux-musleabihf"
    assert recipe.toolchain.channel == "stable"


def test_missing_env_file(tmp_path):
    with pytest.raises(RecipeError):
        RecipeParser(context={}, env_files=[str(tmp_path / "missing.env")])


def test_relative_entrypoint_source(tmp_path):
    recipe_file = tmp_path / "xprov.yml"
    recipe_file.write_text("entrypoint:\n  source: scripts/build.sh\n")
    recipe = RecipeParser(context={}).parse(str(recipe_file))
    assert recipe.entrypoint.source == str(tmp_path / "scripts" / "build.sh")


@pytest.mark.parametrize("template,expected", [
    ("${A}", "1"),
    ("${MISSING:-fallback}", "fallback"),
    ("${A:+set}", "set"),
    ("${MISSING:+set}", ""),
    ("$$HOME", "$HOME"),
    ("plain", "plain"),
])
def test_interpolation(template, expected):
    assert EnvironmentInterpolator.interpolate(template, {"A": "1"}) == expected
