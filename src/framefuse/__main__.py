"""
Allow running framefuse as a module: python -m framefuse
"""

from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
