#!/usr/bin/env python3
"""CLI entry point for proxmux.

Runs the proxy from a source checkout without installing the package.
The installed console script ``proxmux`` calls the same ``main()``.
"""

from proxmux.main import main

if __name__ == "__main__":
    main()
