"""pair-cycler entrypoint.

This file intentionally stays small. The trading loop lives in
`src/trader/cycle.py` and process bootstrap in `src/trader/runner.py`.
"""

from __future__ import annotations

import sys


def main() -> None:
    # Secrets are loaded by the runner once the config has resolved the mode.
    from src.trader.runner import main as runner_main

    sys.exit(runner_main())


if __name__ == "__main__":
    main()
