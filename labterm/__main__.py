"""Run with: python -m labterm serve"""

from .cli import main

if __name__ == "__main__":
    main()
