"""Allow running the CLI with `python -m proxypal.cli`."""

from .main import main

main()
