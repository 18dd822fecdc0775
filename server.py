#!/usr/bin/env python3
"""
Local entrypoint for the settlement engine API.

Use `python3 server.py`; configuration comes from `.env` / TOKENSALE_* variables.
"""

from tokensale_app.main import run


if __name__ == "__main__":
    run()
