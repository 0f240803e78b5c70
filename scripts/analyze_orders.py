#!/usr/bin/env python3
"""
Order Analysis Script

Runs the alerting engine over a canonical merged order export and prints a
JSON summary.

Usage:
    python scripts/analyze_orders.py data/data_merged.csv
    python scripts/analyze_orders.py data/data_merged.csv --days 90 --direction "Express/FBS"
    python scripts/analyze_orders.py data/data_merged.csv --partner "ООО Ромашка" --now 2025-03-01
"""
import sys
import json
import argparse
from pathlib import Path

# Add parent to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import pandas as pd

from churnwatch.models.order import load_order_records
from churnwatch.ml.partner_stats import filter_by_direction, filter_by_time_range
from churnwatch.services.alert_grouping import flatten_alert_groups
from churnwatch.services.alert_service import AlertService
from churnwatch.utils.helpers import parse_order_date
from churnwatch.utils.logger import log


def load_export(path: str, delimiter: str = ';') -> list:
    """Read the merged export; every column stays text so the record model does the parsing"""
    df = pd.read_csv(path, sep=delimiter, dtype=str, keep_default_na=False)
    log.info(f"Loaded {len(df)} rows from {path}")
    return load_order_records(df.to_dict('records'))


def partner_report(service: AlertService, partner_id: str, records: list, now) -> dict:
    groups = service.partner_alert_groups(partner_id, records, now=now)
    return {
        'partner_id': partner_id,
        'groups': [
            {
                'category': g.category,
                'severity': g.severity,
                'count': g.count,
                'total_priority_score': g.total_priority_score,
            }
            for g in groups
        ],
        'alerts': [
            {
                'id': a.id,
                'category': a.category,
                'severity': a.severity,
                'raw_severity': a.raw_severity,
                'priority_score': a.priority_score,
                'customer_size': a.customer_size,
                'message': a.message,
            }
            for a in flatten_alert_groups(groups)
        ],
    }


def main():
    parser = argparse.ArgumentParser(description='Analyze partner orders and print alerts as JSON')
    parser.add_argument('file', help='Canonical merged order export (CSV)')
    parser.add_argument('--delimiter', default=';', help='CSV delimiter')
    parser.add_argument('--days', type=int, help='Only use orders from the last N days')
    parser.add_argument('--direction', default='all', help='Only use orders of this direction')
    parser.add_argument('--partner', help='Print grouped alerts for a single partner')
    parser.add_argument('--now', help='Reference date (defaults to the current UTC time)')
    parser.add_argument('--top', type=int, default=10, help='Number of top alerts in the summary')

    args = parser.parse_args()

    now = None
    if args.now:
        now = parse_order_date(args.now)
        if now is None:
            parser.error(f"Unrecognized date: {args.now}")

    records = load_export(args.file, args.delimiter)
    records = filter_by_time_range(records, args.days, now)
    records = filter_by_direction(records, args.direction)

    service = AlertService()
    if args.partner:
        result = partner_report(service, args.partner, records, now)
    else:
        result = service.summary(records, now=now, top_limit=args.top)

    print(json.dumps(result, ensure_ascii=False, indent=2, default=str))


if __name__ == '__main__':
    main()
