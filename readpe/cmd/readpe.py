import logging
import sys

import click
from rich.console import Console
from rich.logging import RichHandler

from ..destruct import DecodeError
from ..flags import DEFAULT_FLAGS
from ..pe import BadFile, dump_lines

log = logging.getLogger("readpe")


def _setup_logging(verbose):
    handler = RichHandler(console=Console(stderr=True),
                          show_path=False, show_time=False)
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING,
                        format="%(message)s", handlers=[handler], force=True)


def read_image(path):
    # One bulk read; everything after works on the in-memory copy
    with open(path, "rb") as f:
        return f.read()


@click.command("readpe")
@click.argument("files", nargs=-1, required=True,
                type=click.Path(dir_okay=False))
@click.option("--verbose", "-v", is_flag=True, default=False,
              help="Log header offsets and unknown flags to stderr.")
def main(files, verbose):
    """Print the DOS, COFF and section headers of each PE FILE."""
    _setup_logging(verbose)
    for path in files:
        if len(files) > 1:
            click.echo("{}:".format(path))
        try:
            buf = read_image(path)
            log.debug("read %d bytes from %s", len(buf), path)
            for line in dump_lines(buf, DEFAULT_FLAGS):
                click.echo(line)
        except OSError as exc:
            click.echo("Failed to read {}: {}".format(path, exc), err=True)
            sys.exit(1)
        except (DecodeError, BadFile) as exc:
            click.echo("{}: {}".format(path, exc), err=True)
            sys.exit(1)


if __name__ == "__main__":
    main()
