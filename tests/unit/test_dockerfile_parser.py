from xprov.CONVERTERS.to_dockerfile import DockerfileConverter
from xprov.MODELS.recipe import ProvisioningRecipe
from xprov.PARSERS.dockerfile_parser import DockerfileParser

def test_parse_from_string():
    content = """
    # build image
    FROM ubuntu:18.04
    WORKDIR /build
    RUN apt-get update \
        && apt-get install -y curl
    ENV BUILD_DIR=/build OUTPUT_DIR="/output dir"
    ENTRYPOINT ["/entrypoint.sh"]
    """
    parser = DockerfileParser()
    instructions = parser.parse_from_string(content)

    inst_names = [i.instruction for i in instructions]
    assert inst_names == ["FROM", "WORKDIR", "RUN", "ENV", "ENTRYPOINT"]

    # Exec form
    entrypoint = instructions[-1]
    assert entrypoint.arguments == ["/entrypoint.sh"]
    assert entrypoint.exec_form

    # Line continuation
    run_inst = next(i for i in instructions if i.instruction == "RUN")
    assert "&& apt-get install -y curl" in run_inst.arguments[0]

    # Quoted ENV values are unquoted
    env_inst = next(i for i in instructions if i.instruction == "ENV")
    assert env_inst.arguments == ["BUILD_DIR=/build", "OUTPUT_DIR=/output dir"]


def test_shell_form_is_not_exec_form():
    parser = DockerfileParser()
    inst = parser.parse_from_string("ENTRYPOINT /entrypoint.sh --flag")[0]
    assert not inst.exec_form
    assert inst.arguments == ["/entrypoint.sh --flag"]


def test_legacy_env_form():
    parser = DockerfileParser()
    inst = parser.parse_from_string("ENV PATH /usr/local/cargo/bin:/usr/bin")[0]
    assert inst.arguments == ["PATH", "/usr/local/cargo/bin:/usr/bin"]


def test_lowercase_instructions_are_normalized():
    parser = DockerfileParser()
    ast = parser.parse_ast("from ubuntu:18.04\nrun apt-get install -y curl\n")
    assert [i.instruction for i in ast.instructions] == ["FROM", "RUN"]
    assert ast.index_of("RUN", "apt-get install") == 1
    assert ast.index_of("RUN", "rustup") is None


def test_parse_rendered_file(tmp_path):
    path = DockerfileConverter(ProvisioningRecipe()).convert(str(tmp_path))
    instructions = DockerfileParser().parse(path)
    assert instructions[0].instruction == "FROM"
    assert instructions[-1].instruction == "ENTRYPOINT"
