#!/usr/bin/env python3
"""n8n Deployment Bootstrap - Main entry point."""

import sys
from pathlib import Path

# Allow running from a checkout without installing
sys.path.insert(0, str(Path(__file__).parent))


def main():
    """Main entry point."""
    from n8n_bootstrap.cli import main as cli_main
    sys.exit(cli_main())


if __name__ == "__main__":
    main()
