"""Command-line interface for trajclean (typer + rich)."""
