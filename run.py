#!/usr/bin/env python3
"""Backup agent runner"""
import sys
from backupbot.cli import main

if __name__ == '__main__':
    sys.exit(main())
