"""chatrelay CLI bootstrap."""

from __future__ import annotations

from chatrelay.cli import app

if __name__ == "__main__":
    app()
