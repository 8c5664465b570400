"""Run forge as ``python -m forge_cli``."""

from forge_cli.cli.app import main

if __name__ == "__main__":
    main()
