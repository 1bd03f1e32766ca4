"""Allow ``python -m kubexds``."""

from .cli import main

if __name__ == "__main__":
    main()
