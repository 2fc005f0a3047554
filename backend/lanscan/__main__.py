"""
Entry point for running lanscan as a module.

This allows the package to be executed with: python -m lanscan
"""

from .cli import main

if __name__ == "__main__":
    exit(main())
