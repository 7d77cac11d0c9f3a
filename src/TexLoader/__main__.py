"""Entrypoint for `python -m TexLoader`."""
import logging

logger = logging.getLogger("texture_loader")


def _run_cli():
    from .cli import main as cli_main
    logger.debug("Dispatching to CLI entrypoint.")
    cli_main()


if __name__ == "__main__":
    _run_cli()
