"""Entry point for running gitsource via python -m gitsource"""

from .cli import main

if __name__ == "__main__":
    main()
