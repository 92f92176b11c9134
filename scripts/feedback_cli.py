#!/usr/bin/env python3
"""Maintenance CLI for the feedback database (either backend)."""

from __future__ import annotations

import argparse
import csv
import gzip
import json
import shutil
import sqlite3
import sys
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path

from config import Config
from services.database import SQLITE, DatabaseSettings, build_adapter, init_schema
from services.feedback_repository import ENTRY_FIELDS, FeedbackRepository

EXPORT_COLUMNS = [api_name for _, api_name in ENTRY_FIELDS]


def _settings(args) -> DatabaseSettings:
    config = {key: getattr(Config, key) for key in dir(Config) if key.isupper()}
    if args.database:
        config['DATABASE_BACKEND'] = SQLITE
        config['DATABASE_PATH'] = args.database
    return DatabaseSettings.from_config(config)


def init_db(settings: DatabaseSettings):
    adapter = build_adapter(settings)
    try:
        init_schema(adapter)
    finally:
        adapter.close()
    print(f"schema_ready backend={settings.backend}")


def _open(settings: DatabaseSettings):
    adapter = build_adapter(settings)
    init_schema(adapter)
    return adapter


def print_stats(settings: DatabaseSettings):
    adapter = _open(settings)
    try:
        stats = FeedbackRepository(adapter).stats()
    finally:
        adapter.close()
    print(json.dumps(stats, indent=2))


def export_csv(settings: DatabaseSettings, output: str | None):
    adapter = _open(settings)
    try:
        entries = FeedbackRepository(adapter).all_entries()
    finally:
        adapter.close()

    if output:
        handle = open(output, 'w', newline='', encoding='utf-8')
    else:
        handle = sys.stdout
    try:
        writer = csv.DictWriter(handle, fieldnames=EXPORT_COLUMNS)
        writer.writeheader()
        for entry in entries:
            writer.writerow(entry)
    finally:
        if output:
            handle.close()
    if output:
        print(f"exported_rows={len(entries)} file={output}")


def backup_database(settings: DatabaseSettings, backup_dir: str) -> Path:
    if settings.backend != SQLITE:
        raise SystemExit('backup only supports the local SQLite database')
    if settings.path == ':memory:' or not Path(settings.path).exists():
        raise SystemExit(f'database file not found: {settings.path}')

    target_dir = Path(backup_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    ts = datetime.now(timezone.utc).strftime('%Y%m%dT%H%M%SZ')
    raw_backup = target_dir / f'feedback_{ts}.sqlite3'
    gz_backup = Path(str(raw_backup) + '.gz')

    with closing(sqlite3.connect(settings.path)) as conn, closing(sqlite3.connect(str(raw_backup))) as out:
        conn.backup(out)

    with open(raw_backup, 'rb') as src, gzip.open(gz_backup, 'wb') as dst:
        shutil.copyfileobj(src, dst)
    raw_backup.unlink(missing_ok=True)

    print(f'backup_created={gz_backup}')
    return gz_backup


def main(argv=None):
    parser = argparse.ArgumentParser(description='Project Feedback API maintenance utility')
    parser.add_argument('--database', help='SQLite file to use instead of the configured backend')
    sub = parser.add_subparsers(dest='cmd', required=True)

    sub.add_parser('init-db', help='create the feedback table and indexes')
    sub.add_parser('stats', help='print the statistics summary as JSON')

    p_export = sub.add_parser('export', help='export every entry as CSV')
    p_export.add_argument('--output', help='file to write (default: stdout)')

    p_backup = sub.add_parser('backup', help='gzip a snapshot of the SQLite database')
    p_backup.add_argument('--backup-dir', default='backups')

    args = parser.parse_args(argv)
    settings = _settings(args)

    if args.cmd == 'init-db':
        init_db(settings)
    elif args.cmd == 'stats':
        print_stats(settings)
    elif args.cmd == 'export':
        export_csv(settings, args.output)
    elif args.cmd == 'backup':
        backup_database(settings, args.backup_dir)
    return 0


if __name__ == '__main__':
    sys.exit(main())
