"""Allow running as ``python -m store_merger``."""

from .cli import main

if __name__ == "__main__":
    main()
