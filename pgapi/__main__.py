"""Allow ``python -m pgapi``."""

from pgapi.cli import main

if __name__ == "__main__":
    main()
