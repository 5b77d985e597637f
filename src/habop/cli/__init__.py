import logging
import pathlib
import sys

from typing import List
from typing_extensions import Annotated

import typer.core

typer.core.rich = None

import typer  # noqa: E402
import yaml  # noqa: E402


app = typer.Typer(add_completion=False)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: Annotated[bool, typer.Option('--verbose', '-v')] = False,
    debug: Annotated[bool, typer.Option('--debug', '-d')] = False,
) -> None:
    """
    Habitat service group operator.
    """
    setattr(ctx, 'obj', {})

    logging.basicConfig(
        level=logging.ERROR,
        format='%(levelname)s: %(module)s: %(message)s',
        stream=sys.stderr,
    )
    log = logging.getLogger('habop')
    log_level = logging.ERROR
    if verbose:
        log_level = logging.INFO
    elif debug:
        log_level = logging.DEBUG
    log.setLevel(log_level)
    ctx.obj['log_level'] = log_level
    ctx.obj['log'] = log
    ctx.obj['debug'] = debug


@app.command(name='run', short_help='Run the operator')
def run(
    ctx: typer.Context,
    all_namespaces: Annotated[
        bool,
        typer.Option(
            '--all-namespaces',
            envvar='HABOP_ALL_NAMESPACES',
            help='Watch all namespaces.',
        ),
    ] = False,
    namespaces: Annotated[
        List[str],
        typer.Option(
            '--namespace',
            envvar='HABOP_NAMESPACE',
            help='Watch the given namespaces instead of the default. Can be given multiple times.',
        ),
    ] = None,
    resync_period: Annotated[
        float,
        typer.Option(
            envvar='HABOP_RESYNC_PERIOD',
            help='Seconds between full relists of the watched objects.',
        ),
    ] = 60,
    concurrency: Annotated[
        int,
        typer.Option(
            envvar='HABOP_CONCURRENCY',
            min=1,
            help='Number of workers per controller.',
        ),
    ] = 1,
    max_retries: Annotated[
        int,
        typer.Option(
            envvar='HABOP_MAX_RETRIES',
            min=0,
            help='Give up on an event after that many failed attempts.',
        ),
    ] = 5,
    keep_stale_leader: Annotated[
        bool,
        typer.Option(
            '--keep-stale-leader',
            envvar='HABOP_KEEP_STALE_LEADER',
            help='Keep the last leader address when no running pod is left.',
        ),
    ] = False,
    default_group: Annotated[
        str,
        typer.Option(
            envvar='HABOP_DEFAULT_GROUP',
            help='Peer group of service groups that do not name one.',
        ),
    ] = None,
) -> None:
    from .. import exceptions, operator
    from ..config import DEFAULT_GROUP, Settings
    from ..manager import Manager

    settings = Settings(
        namespaces=namespaces or [],
        all_namespaces=all_namespaces,
        resync_period=resync_period,
        concurrency=concurrency,
        max_retries=max_retries,
        clear_leader_when_empty=not keep_stale_leader,
        default_group=default_group or DEFAULT_GROUP,
    )
    log = ctx.obj['log']
    log.debug('settings: %r', settings)

    manager = Manager(settings)
    operator.setup(manager)
    try:
        manager.run(debug=ctx.obj['debug'])
    except exceptions.FatalError as e:
        typer.echo(f'Error: {e}', err=True)
        raise typer.Exit(code=1)


@app.command(
    name='render',
    short_help='Print the objects created for the service groups in the given file',
)
def render(
    ctx: typer.Context,
    path: Annotated[pathlib.Path, typer.Argument(help='File with ServiceGroup manifests, - for stdin.')],
    default_group: Annotated[
        str,
        typer.Option(
            envvar='HABOP_DEFAULT_GROUP',
            help='Peer group of service groups that do not name one.',
        ),
    ] = None,
) -> None:
    """Validate ServiceGroup manifests and print the Deployments and peer
    address records the operator would create for them."""
    from ..config import DEFAULT_GROUP
    from ..exceptions import ValidationError
    from ..models import ServiceGroup
    from ..records import new_config_map, new_deployment
    from ..resources import resources_to_yaml
    from ..validation import validate_service_group

    if str(path) == '-':
        text = sys.stdin.read()
    else:
        text = path.read_text()

    objects = []
    for doc in yaml.safe_load_all(text):
        if not isinstance(doc, dict) or doc.get('kind') != 'ServiceGroup':
            continue
        sg = ServiceGroup.from_dict(doc)
        if sg.metadata.namespace is None:
            sg.metadata.namespace = 'default'
        try:
            validate_service_group(sg)
        except ValidationError as e:
            typer.echo(f'{sg.namespace}/{sg.name}: {e}', err=True)
            raise typer.Exit(code=1)
        group = sg.spec.group or default_group or DEFAULT_GROUP
        objects.append(new_deployment(sg, group))
        objects.append(new_config_map(sg.name, sg.namespace))

    if objects:
        typer.echo(resources_to_yaml(*objects), nl=False)


if __name__ == '__main__':
    app()
