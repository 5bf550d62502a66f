"""Allow running as `python -m pipelinesync`."""

from pipelinesync.cli import main

main()
