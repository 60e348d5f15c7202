"""CLI entry point for python -m scenechain"""
from scenechain.cli.commands import app

if __name__ == "__main__":
    app()
