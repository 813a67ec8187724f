#!/usr/bin/env python3
"""
Remove duplicate order records from the ledger, keeping the latest entry per id.

Run: python scripts/cleanup_duplicates.py [--dry-run]
"""
import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pos_config as cfg  # noqa: E402
import pos_service as ps  # noqa: E402
import pos_sync  # noqa: E402

logging.basicConfig(level=logging.INFO, format='[cleanup] %(asctime)s %(levelname)s %(message)s')
log = logging.getLogger('cleanup')

ap = argparse.ArgumentParser()
ap.add_argument("--db", default=cfg.CACHE_DB_PATH)
ap.add_argument("--dry-run", action="store_true", help="report duplicates without saving")
args = ap.parse_args()

remote = pos_sync.RemoteStore() if cfg.REMOTE_URL else None
sync = pos_sync.PosSync(remote=remote, cache=pos_sync.LocalCache(args.db))
data, source = sync.load()
services = ps.PosServices(ps.PosState(data))

dupes = services.ledger.duplicate_ids()
if not dupes:
    log.info("No duplicate order ids (%d orders, loaded from %s)", len(data.get("orders") or []), source)
    sys.exit(0)
for oid, count in sorted(dupes.items()):
    log.info("%s appears %d times", oid, count)

if args.dry_run:
    log.info("Dry run: %d duplicate record(s) left in place", sum(dupes.values()) - len(dupes))
    sys.exit(0)

removed = services.ledger.cleanup_duplicates()
sync.persist(services.state.snapshot(), background=False)
log.info("Removed %d duplicate record(s)", removed)
