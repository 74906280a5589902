"""
Command Line Interface for XPROV.
"""
import click
import os
from ..BUILDERS.provisioner import Provisioner, read_state
from ..CONVERTERS.to_dockerfile import DockerfileConverter
from ..MODELS.env_contract import EnvironmentContract
from ..PARSERS.recipe_parser import RecipeParser
from ..REGISTRY.registry_client import RegistryClient
from ..RUNNERS.entrypoint_executor import EntrypointExecutor
from ..RUNNERS.orchestrator import CargoOrchestrator
from ..errors import XprovError


def _recipe(ctx):
    """Loads the recipe once per invocation; built-in defaults without a file."""
    if 'recipe' not in ctx.obj:
        path = ctx.obj['file']
        try:
            parser = RecipeParser(env_files=ctx.obj['env_files'])
            if os.path.exists(path):
                ctx.obj['recipe'] = parser.parse(path)
            else:
                click.echo(f"{path} not found, using the built-in recipe.", err=True)
                ctx.obj['recipe'] = parser.from_dict({})
        except XprovError as e:
            raise click.ClickException(str(e))
    return ctx.obj['recipe']


@click.group()
@click.option('--file', '-f', default='xprov.yml', help='Recipe file path')
@click.option('--env-file', 'env_files', multiple=True, help='.env file for recipe interpolation')
@click.pass_context
def cli(ctx, file, env_files):
    """
    XPROV - Cross-build environment provisioner.

    Provisions a pinned toolchain and compile target, fixes the environment
    contract and installs the build orchestrator as the sole entry point.
    """
    ctx.ensure_object(dict)
    ctx.obj['file'] = file
    ctx.obj['env_files'] = list(env_files)


@cli.command()
@click.option('--out', '-o', default='.', help='Build context directory')
@click.pass_context
def render(ctx, out):
    """Render the recipe as a layered Dockerfile."""
    converter = DockerfileConverter(_recipe(ctx))
    try:
        path = converter.convert(out)
    except XprovError as e:
        raise click.ClickException(str(e))
    click.echo(path)


@cli.command()
@click.option('--root', default='/', help='Root of the image filesystem')
@click.option('--skip-pin-resolution', is_flag=True, help='Do not resolve the base image in its registry')
@click.option('--no-cache', is_flag=True, help='Run every step even if already done')
@click.pass_context
def provision(ctx, root, skip_pin_resolution, no_cache):
    """Provision the build environment into ROOT."""
    recipe = _recipe(ctx)
    provisioner = Provisioner(
        recipe,
        root=root,
        registry=None if skip_pin_resolution else RegistryClient(),
        use_cache=not no_cache,
    )
    try:
        state = provisioner.provision()
    except XprovError as e:
        raise click.ClickException(str(e))
    for binary, version in state.toolchain_versions.items():
        click.echo(f"{binary:8} {version}")
    click.echo("Provisioning complete.")


@cli.command()
@click.pass_context
def env(ctx):
    """Print the environment contract."""
    for key, value in _recipe(ctx).contract.as_environ().items():
        click.echo(f"{key}={value}")


@cli.command()
@click.option('--root', default='/', help='Root of the image filesystem')
def status(root):
    """Show what has been provisioned into ROOT."""
    state = read_state(root)
    click.echo(f"{'BASE IMAGE':12} {state.base_image or '-'}")
    click.echo(f"{'DIGEST':12} {state.base_digest or '-'}")
    click.echo(f"{'CHANNEL':12} {state.toolchain_channel or '-'}")
    click.echo(f"{'TARGETS':12} {', '.join(state.targets) or '-'}")
    for binary, version in state.toolchain_versions.items():
        click.echo(f"{binary.upper():12} {version}")
    click.echo(f"{'ENTRYPOINT':12} {state.entrypoint or '-'}")
    click.echo(f"{'STEPS':12} {', '.join(state.fingerprints) or '-'}")
    if state.complete:
        click.echo(f"{'STATUS':12} complete")
    elif state.failed_step:
        click.echo(f"{'STATUS':12} failed at {state.failed_step}")
    else:
        click.echo(f"{'STATUS':12} incomplete")


@cli.command(context_settings={'ignore_unknown_options': True, 'allow_interspersed_args': False})
@click.option('--root', default='/', help='Root of the image filesystem')
@click.argument('args', nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(ctx, root, args):
    """Run the image entry point, passing ARGS through."""
    try:
        result = EntrypointExecutor(root).execute(args)
    except XprovError as e:
        raise click.ClickException(str(e))
    ctx.exit(result.exit_code)


@cli.command(context_settings={'ignore_unknown_options': True})
@click.argument('args', nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def build(ctx, args):
    """Build $BUILD_DIR for $BUILD_TARGET into $OUTPUT_DIR with cargo."""
    try:
        contract = EnvironmentContract.from_environ(os.environ)
    except KeyError as e:
        raise click.ClickException(f"Contract variable {e.args[0]} is not set")
    result = CargoOrchestrator().run(contract, args)
    for artifact in result.artifacts:
        click.echo(artifact)
    ctx.exit(result.exit_code)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
