"""stdio-rpc-supervisor entry point.

Supports: python -m stdio_rpc
"""

from .app import main

if __name__ == "__main__":
    main()
