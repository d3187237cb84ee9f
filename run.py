#!/usr/bin/env python3
"""Development runner"""
import os
import sys

from xbackup.cli import main

if __name__ == '__main__':
    # Use development config for local testing unless told otherwise
    os.environ.setdefault('XBACKUP_ENV', 'development')
    sys.exit(main())
