"""Allow running with `python -m pinger`."""

from .main import main

main()
