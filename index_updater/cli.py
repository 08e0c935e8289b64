import logging

import click

import index_updater.middleware.index as index_
from index_updater.environment import Environment
from index_updater.models.naming import CURRENT_IDENTIFIER
from index_updater.models.utils import DEFAULT_CONFIG_FILE, ExitCode

logger = logging.getLogger(__name__)

# ################### UNIVERSAL ####################


class Context(object):
    def __init__(self, config_file) -> None:
        self.config_file = config_file
        try:
            self.env = Environment(config_file=config_file)
        except Exception as e:
            raise click.ClickException(str(e))
        self.json = False


@click.group()
@click.option("--config-file", default=DEFAULT_CONFIG_FILE, help="Path to config file")
@click.option("--json", is_flag=True)
@click.option('-v', '--verbose', count=True, help="Verbosity level. Default is warn, -v is info, -vv is debug.")
@click.pass_context
def cli(ctx, config_file, json, verbose):
    logging.basicConfig(level=logging.WARN - (10 * verbose))
    logger.info(f"Logging set to {logging.getLevelName(logger.getEffectiveLevel())}")
    ctx.obj = Context(config_file)
    ctx.obj.json = json


def _echo_result(exitcode: ExitCode, message: str) -> None:
    if exitcode != ExitCode.SUCCESS:
        raise click.ClickException(message)
    click.echo(message)


index_type_option = click.option("--index-type", required=True, help="Index type to act on, e.g. content")
index_identifier_option = click.option(
    "--index-identifier", default=CURRENT_IDENTIFIER, show_default=True,
    help="Identifier of the index: 'now' for the current time, 'current' for the one index of this type that "
         "exists now (or 'first' if none does), or any other string to use as is.")


def reindex_options(func):
    func = click.option("--reindex-chunk-size", "chunk_size", type=click.IntRange(min=1), default=None,
                        help="Documents per scroll page and bulk request. Overrides the index type's config.")(func)
    func = click.option("--reindex-acceptable-count-deviation", "acceptable_count_deviation", default=None,
                        help="How far the copied document count may be from the source, e.g. 5% or 0.05. "
                             "Overrides the index type's config.")(func)
    func = click.option("--reindex-processes", "reindex_processes", type=click.IntRange(min=1), default=None,
                        help="Number of parallel reindex workers. Overrides the index type's config.")(func)
    return func


# ##################### INDEX ###################


@cli.command(name="update")
@index_type_option
@index_identifier_option
@click.option("--rebuild", is_flag=True, default=False,
              help="Blow away the identified index and rebuild it from scratch.")
@click.option("--close-ok", is_flag=True, default=False,
              help="Allow closing the index to correct analyzers. The index is unusable while closed.")
@click.option("--reindex-and-remove-ok", is_flag=True, default=False,
              help="If the alias is held by another index, reindex all documents from that index into this one "
                   "then swap the alias and remove the old index.")
@reindex_options
@click.pass_obj
def update_cmd(ctx, index_type, index_identifier, rebuild, close_ok, reindex_and_remove_ok, chunk_size,
               acceptable_count_deviation, reindex_processes):
    """Converge an index type on its desired configuration."""
    exitcode, message = index_.update(ctx.env, index_type, index_identifier, rebuild=rebuild, close_ok=close_ok,
                                      reindex_and_remove_ok=reindex_and_remove_ok, chunk_size=chunk_size,
                                      acceptable_count_deviation=acceptable_count_deviation,
                                      reindex_processes=reindex_processes, as_json=ctx.json)
    _echo_result(exitcode, message)


@cli.command(name="force-open")
@index_type_option
@index_identifier_option
@click.pass_obj
def force_open_cmd(ctx, index_type, index_identifier):
    """Open the index if it is closed. Nothing else is checked."""
    exitcode, message = index_.force_open(ctx.env, index_type, index_identifier, as_json=ctx.json)
    _echo_result(exitcode, message)


@cli.command(name="force-reindex")
@index_type_option
@index_identifier_option
@reindex_options
@click.pass_obj
def force_reindex_cmd(ctx, index_type, index_identifier, chunk_size, acceptable_count_deviation,
                      reindex_processes):
    """Copy every document behind the type alias into the index. Aliases are left alone."""
    exitcode, message = index_.force_reindex(ctx.env, index_type, index_identifier, chunk_size=chunk_size,
                                             acceptable_count_deviation=acceptable_count_deviation,
                                             reindex_processes=reindex_processes, as_json=ctx.json)
    _echo_result(exitcode, message)


@cli.command(name="status")
@index_type_option
@index_identifier_option
@click.pass_obj
def status_cmd(ctx, index_type, index_identifier):
    """Show the index, its alias holders, and which sections drift from the desired configuration."""
    exitcode, message = index_.status(ctx.env, index_type, index_identifier, as_json=ctx.json)
    _echo_result(exitcode, message)


@cli.command(name="describe")
@index_type_option
@click.pass_obj
def describe_cmd(ctx, index_type):
    """Show the configuration of an index type and the names derived from it."""
    exitcode, message = index_.describe(ctx.env, index_type, as_json=ctx.json)
    _echo_result(exitcode, message)


#################################################


def main():
    cli()


if __name__ == "__main__":
    main()
