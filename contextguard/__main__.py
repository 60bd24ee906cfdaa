"""Entry point for running contextguard as a module: python -m contextguard"""

from contextguard.cli.commands import app

if __name__ == "__main__":
    app()
