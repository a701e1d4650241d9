"""Entry point of the ``sitedeck`` command line tool."""

from __future__ import annotations

import click

from sitedeck import __version__
from sitedeck.cli.commands.deploy import deploy
from sitedeck.cli.commands.recover import recover
from sitedeck.cli.commands.remove import remove
from sitedeck.cli.commands.status import status


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, prog_name="sitedeck")
def main() -> None:
    """SiteDeck - deploy static sites to AWS S3 and CloudFront.

    Configuration is read from sitedeck.yaml in the current directory or
    one of its parents. Deployment state is kept in .sitedeck/ beside it.

    Example:

        sitedeck deploy --env production

        sitedeck status --all
    """


main.add_command(deploy)
main.add_command(remove)
main.add_command(status)
main.add_command(recover)


if __name__ == "__main__":  # pragma: no cover
    main()
