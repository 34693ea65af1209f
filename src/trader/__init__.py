"""
Trader orchestration package.

The process entrypoint remains `main.py` at the repo root. The buy/sell state
machine lives in `cycle.py`; `runner.py` wires config, logging and the exchange
adapter around it.
"""
