"""Run Ollamate from a checkout or a frozen bundle without package-relative imports."""

from __future__ import annotations

from ollamate.main import main


if __name__ == "__main__":
    main()
