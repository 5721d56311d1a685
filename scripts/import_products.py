#!/usr/bin/env python3
"""
Product Catalog Import Script

Uploads one or more product spreadsheets (CSV, CSV.gz or XLSX) for a tenant
and follows each import's progress stream until it completes.

Usage:
    python import_products.py --tenant-id <uuid> --api-key <key> --mapping mapping.json products.xlsx
    python import_products.py --tenant-id <uuid> --api-key <key> --mapping mapping.json --sync products.csv
    python import_products.py --tenant-id <uuid> --api-key <key> --mapping mapping.json --dry-run *.csv

The mapping file is a JSON object of field name -> column header, e.g.
    {"sku": "SKU", "name": "Title", "family": "Family", "Voltage": "Voltage [Decimal]"}
"""

import argparse
import json
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Dict, Iterator, List
import requests
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    '.csv': 'text/csv',
    '.gz': 'application/gzip',
    '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}


class ProductImportClient:
    """Client for the product import API."""

    def __init__(self, tenant_id: str, api_key: str, api_base_url: str = "http://localhost:8000"):
        self.tenant_id = tenant_id
        self.api_base_url = api_base_url.rstrip('/')
        self.session = requests.Session()
        self.session.headers['X-API-Key'] = api_key

    def _url(self, path: str) -> str:
        return f"{self.api_base_url}/api/v1/tenants/{self.tenant_id}/products/import/{path}"

    def _files(self, filepath: str, handle):
        extension = os.path.splitext(filepath)[1].lower()
        content_type = CONTENT_TYPES.get(extension, 'application/octet-stream')
        return {'file': (os.path.basename(filepath), handle, content_type)}

    def import_sync(self, filepath: str, mapping: Dict) -> Dict:
        """Upload a file and wait for the complete import summary."""
        with open(filepath, 'rb') as f:
            response = self.session.post(self._url(''), files=self._files(filepath, f),
                                         data={'mapping': json.dumps(mapping)})
        response.raise_for_status()
        return response.json()

    def start_import(self, filepath: str, mapping: Dict) -> Dict:
        """Queue a background import; the response carries the session id."""
        with open(filepath, 'rb') as f:
            response = self.session.post(self._url('sessions/'), files=self._files(filepath, f),
                                         data={'mapping': json.dumps(mapping)})
        response.raise_for_status()
        return response.json()

    def get_status(self, session_id: str) -> Dict:
        response = self.session.get(self._url(f'sessions/{session_id}/'))
        response.raise_for_status()
        return response.json()

    def follow_progress(self, session_id: str) -> Iterator[Dict]:
        """Yield progress snapshots from the server-sent event stream until it closes."""
        with self.session.get(self._url(f'sessions/{session_id}/progress/'), stream=True,
                              headers={'Accept': 'text/event-stream'}, timeout=(10, None)) as response:
            response.raise_for_status()
            for line in response.iter_lines(decode_unicode=True):
                if line and line.startswith('data: '):
                    yield json.loads(line[len('data: '):])


def run_import(client: ProductImportClient, filepath: str, mapping: Dict, sync: bool) -> Dict:
    """Import one file and return its summary."""
    if sync:
        return client.import_sync(filepath, mapping)

    started = client.start_import(filepath, mapping)
    session_id = started['session_id']
    logger.info(f"{os.path.basename(filepath)}: queued as session {session_id}")

    last = {}
    for snapshot in client.follow_progress(session_id):
        last = snapshot
        logger.info(f"{os.path.basename(filepath)}: {snapshot.get('percentage', 0)}% "
                    f"{snapshot.get('message', '')}")

    if last.get('status') == 'error':
        raise RuntimeError(last.get('message') or 'Import failed')
    return last.get('summary') or client.get_status(session_id).get('summary') or {}


def main():
    """Main function for product imports."""
    parser = argparse.ArgumentParser(description='Product catalog import script')

    parser.add_argument('files', nargs='+', help='Product files to import')
    parser.add_argument('--tenant-id', required=True, help='Tenant UUID')
    parser.add_argument('--api-key', required=True, help='Tenant API key')
    parser.add_argument('--mapping', required=True, help='JSON file with field -> column header mapping')
    parser.add_argument('--api-url', default='http://localhost:8000', help='API base URL')
    parser.add_argument('--sync', action='store_true', help='Use the synchronous import endpoint')
    parser.add_argument('--workers', type=int, default=2, help='Files imported in parallel')
    parser.add_argument('--dry-run', action='store_true', help='Show what would be imported without uploading')
    parser.add_argument('--verbose', action='store_true', help='Verbose output')

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    with open(args.mapping, 'r', encoding='utf-8') as f:
        mapping = json.load(f)

    missing = [path for path in args.files if not os.path.exists(path)]
    if missing:
        logger.error(f"Files not found: {', '.join(missing)}")
        return

    if args.dry_run:
        logger.info(f"[DRY RUN] Would import {len(args.files)} files for tenant {args.tenant_id}")
        logger.info(f"[DRY RUN] Mapping: {mapping}")
        return

    client = ProductImportClient(args.tenant_id, args.api_key, args.api_url)
    start_time = time.time()
    results: List[Dict] = []
    errors: List[str] = []

    with ThreadPoolExecutor(max_workers=max(1, args.workers)) as executor:
        future_to_file = {
            executor.submit(run_import, client, filepath, mapping, args.sync): filepath
            for filepath in args.files
        }

        for future in as_completed(future_to_file):
            filepath = future_to_file[future]
            try:
                summary = future.result()
                results.append(summary)
                logger.info(f"Imported: {os.path.basename(filepath)} "
                            f"({summary.get('success_count', 0)}/{summary.get('total_rows', 0)} rows)")
            except Exception as e:
                error_msg = f"Failed to import {filepath}: {e}"
                errors.append(error_msg)
                logger.error(error_msg)

    duration = time.time() - start_time
    total_rows = sum(r.get('total_rows', 0) for r in results)
    succeeded = sum(r.get('success_count', 0) for r in results)
    failed_rows = [row for r in results for row in r.get('failed_rows', [])]

    logger.info("=" * 80)
    logger.info("PRODUCT IMPORT SUMMARY")
    logger.info("=" * 80)
    logger.info(f"Files imported: {len(results)} of {len(args.files)}")
    logger.info(f"Rows: {total_rows:,} total, {succeeded:,} imported, {len(failed_rows):,} failed")
    logger.info(f"Processing time: {duration:.2f} seconds")

    for row in failed_rows[:20]:
        logger.warning(f"  row {row.get('row')}: {row.get('error')}")
    for error in errors:
        logger.error(f"  {error}")


if __name__ == '__main__':
    main()
