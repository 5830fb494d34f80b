"""Entry point for ``python -m igdmap``."""

from igdmap.cli.main import main

if __name__ == "__main__":
    main()
