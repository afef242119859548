"""phab main entry point."""

from phabtree.cli import app


def main():
    """Main entry point for the phab CLI."""
    app()


if __name__ == "__main__":
    main()
