#!/usr/bin/env python3
"""
Split a full remote dataset into the month-partitioned layout:
<path>/reference.json plus <path>/orders/<YYYY-MM>.json.

Run: python scripts/partition_orders.py [--dry-run]
"""
import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pos_config as cfg  # noqa: E402
import pos_sync  # noqa: E402

logging.basicConfig(level=logging.INFO, format='[partition] %(asctime)s %(levelname)s %(message)s')
log = logging.getLogger('partition')

ap = argparse.ArgumentParser()
ap.add_argument("--dry-run", action="store_true", help="print the month split without writing")
args = ap.parse_args()

if not cfg.REMOTE_URL:
    log.error("POS_REMOTE_URL is not set")
    sys.exit(1)

remote = pos_sync.RemoteStore()
try:
    payload = remote.fetch_dataset()
except pos_sync.RemoteStoreError as exc:
    log.error("Could not read the full dataset: %s", exc)
    sys.exit(1)
if not pos_sync.is_valid_remote_payload(payload):
    log.error("Remote dataset has no orders collection; nothing to split")
    sys.exit(1)

data = pos_sync.repair_dataset(dict(payload))
months = pos_sync.group_orders_by_month(data["orders"])
for month, orders in sorted(months.items()):
    log.info("%s: %d order(s)", month, len(orders))

if args.dry_run:
    sys.exit(0)

try:
    pos_sync.write_remote(data, remote, partitioned=True)
except pos_sync.RemoteStoreError as exc:
    log.error("Writing partitions failed: %s", exc)
    sys.exit(1)
log.info("Wrote reference document and %d month partition(s)", len(months))
