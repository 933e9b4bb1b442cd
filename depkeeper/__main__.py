"""Module entry point for the depkeeper CLI."""

from .main import main

if __name__ == "__main__":
    main()
