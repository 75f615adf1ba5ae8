"""Module entrypoint for `python -m mdshellrunner`."""

try:
    from .cli import run
except ImportError:
    # Script execution runs this module outside package context.
    from mdshellrunner.cli import run


if __name__ == "__main__":
    raise SystemExit(run())
