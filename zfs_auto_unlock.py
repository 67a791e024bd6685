#!/usr/bin/env python3
"""
zfs_auto_unlock.py — unlock encrypted ZFS pools at boot from age-wrapped keys.

Intended for init scripts: imports pools with -N, mounts each pool's keystore
dataset, tries the configured age identities in order and finishes with
`zfs mount -a` when every pool is unlocked.
"""

import sys

from autounlock.cli import main

if __name__ == "__main__":
    sys.exit(main())
