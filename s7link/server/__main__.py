"""
The :code:`__main__` module is used as an entrypoint when calling the module from the terminal using python -m flag.
It contains functions providing a comandline interface to the server module.

Its :code:`main()` function is also exported as an consol-entrypoint.
"""

import logging
import sys

try:
    import click
except ImportError as e:
    print(e)
    print("Try using 'pip install python-s7link[cli]'")
    sys.exit(1)

from s7link import __version__
from s7link.server import mainloop


@click.command()
@click.option("-p", "--port", default=1102, help="Port the server will listen on.")
@click.option("-v", "--verbose", is_flag=True, help="Also print debug-output.")
@click.version_option(__version__)
@click.help_option("-h", "--help")
def main(port: int, verbose: bool) -> None:
    """Start a S7 dummy server with some default values."""

    if verbose:
        logging.basicConfig(format="[%(levelname)s]: %(message)s", level=logging.DEBUG)
    else:
        logging.basicConfig(format="[%(levelname)s]: %(message)s", level=logging.INFO)

    mainloop(port, init_standard_values=True)


if __name__ == "__main__":
    main()
