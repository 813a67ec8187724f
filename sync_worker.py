#!/usr/bin/env python3
"""
POS Sync Worker

Modes:
  - refresh: pull store info and settings from the remote store into the local cache
  - push: re-save the cached dataset to the remote store (an operator-driven resync)

Env vars:
  POS_CACHE_DB     SQLite cache path (default: pos_cache.db)
  POS_REMOTE_URL   remote document store base URL (worker idles when unset)
  SYNC_MODE        'refresh' | 'push' (default: 'refresh')
  SYNC_INTERVAL    seconds between loops (default: 60)

Run:
  python sync_worker.py
"""
import logging
import time
from typing import Optional

import pos_config as cfg
import pos_sync

logging.basicConfig(level=getattr(logging, cfg.LOG_LEVEL_NAME, logging.INFO),
                    format='[pos-sync] %(asctime)s %(levelname)s %(message)s')
log = logging.getLogger('pos-sync')

MODES = ('refresh', 'push')


def build_sync() -> pos_sync.PosSync:
    remote = pos_sync.RemoteStore() if cfg.REMOTE_URL else None
    return pos_sync.PosSync(remote=remote, cache=pos_sync.LocalCache())


def loop_refresh(sync: pos_sync.PosSync) -> bool:
    if sync.cache.read() is None:
        _, source = sync.load()
        log.info('Cache was empty; reconciled dataset from %s', source)
        return True
    refreshed = sync.refresh_cache()
    if refreshed:
        log.info('Store and settings merged into the cache')
    return refreshed


def loop_push(sync: pos_sync.PosSync) -> bool:
    pushed = sync.push_cached()
    if not pushed:
        log.warning('Nothing pushed to the remote store')
    return pushed


def run_once(sync: pos_sync.PosSync, mode: str) -> bool:
    if mode not in MODES:
        raise ValueError(f'Unknown SYNC_MODE: {mode}')
    if not sync.remote_enabled:
        log.debug('Remote store not configured; nothing to do')
        return False
    if mode == 'push':
        return loop_push(sync)
    return loop_refresh(sync)


def main(mode: Optional[str] = None, interval: Optional[float] = None):
    mode = mode or cfg.SYNC_MODE
    interval = cfg.SYNC_INTERVAL if interval is None else interval
    if mode not in MODES:
        log.error('Unknown SYNC_MODE %r (expected one of %s)', mode, ', '.join(MODES))
        return 2
    sync = build_sync()
    log.info('Starting sync worker in %s mode (interval %.0fs)', mode, interval)
    while True:
        try:
            run_once(sync, mode)
        except Exception:
            log.exception('Sync loop failed')
        time.sleep(max(1.0, interval))


if __name__ == '__main__':
    raise SystemExit(main())
