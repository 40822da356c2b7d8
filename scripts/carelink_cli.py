#!/usr/bin/env python3
"""CareLink CLI launcher script.

This is a convenience script that can be run directly from the scripts directory.
The actual implementation is in carelink_log.log_cli for proper package integration.

Usage:
    python scripts/carelink_cli.py <command> [options]
    
Or install the package and use:
    carelink-cli <command> [options]
    python -m carelink_log.log_cli <command> [options]
"""

from carelink_log.log_cli import main

if __name__ == "__main__":
    main()
