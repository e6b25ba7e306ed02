# main.py
from __future__ import annotations
import sys

from tools.feed_cli import main as cli_main

def main() -> None:
    # no arguments: run the local simulation with defaults
    cli_main(sys.argv[1:] or ["demo"])

if __name__ == "__main__":
    main()
