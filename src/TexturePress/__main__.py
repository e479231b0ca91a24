"""Entrypoint for `python -m TexturePress`."""

from .cli import main

if __name__ == "__main__":
    main()
