"""CLI entry point for pywelltest."""

from pywelltest.cli.commands import app


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
