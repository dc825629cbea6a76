"""Package entrypoint – allows `python -m crashwatch …`.

Delegates to :pyfunc:`crashwatch.cli.run` so the command-line interface lives
in one place.
"""

from __future__ import annotations

from .cli import run


def main() -> None:  # noqa: D401 – CLI entrypoint
    """Run the ``crashwatch`` command line."""

    run()


if __name__ == "__main__":  # pragma: no cover – direct invocation
    main()
