"""Allow running as ``python -m afzoffline``."""

from . import main

main()
