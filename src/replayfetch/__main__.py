"""
replayfetch CLI Entry Point

Allows running the package as a module: python -m replayfetch
"""

from replayfetch.cli import main

if __name__ == "__main__":
    main()
