#!/usr/bin/env python3
"""
Transaction categorization CLI

Categorizes a CSV of transactions against rules loaded from a JSON rule
file (in memory) or from the database.
"""
import argparse
import csv
import sys
from pathlib import Path

import psycopg2

from smart_categorizer.config import EngineConfig
from smart_categorizer.core.cache import CachedRuleLookup, CacheInvalidator, InMemoryRuleCache
from smart_categorizer.core.categorization_orchestrator import CategorizationOrchestrator
from smart_categorizer.core.csv_parser import parse_transactions_csv
from smart_categorizer.core.merchant_normalizer import MerchantNormalizer
from smart_categorizer.core.rule_loader import load_rule_file, seed_rules
from smart_categorizer.core.rule_service import RuleService
from smart_categorizer.errors import CategorizerError
from smart_categorizer.storage.memory_store import InMemoryStore
from smart_categorizer.storage.postgres_store import PostgresStore
from smart_categorizer.utils.db_connection import get_db_connection
from smart_categorizer.utils.logger import setup_logging

OUTPUT_COLUMNS = [
    'id', 'transaction_date', 'merchant_name', 'description', 'amount',
    'category', 'confidence', 'method', 'needs_review', 'patterns',
]


def write_results(output_path: Path, transactions, results):
    """Write categorized transactions to CSV"""
    with open(output_path, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(f, fieldnames=OUTPUT_COLUMNS)
        writer.writeheader()
        for txn, result in zip(transactions, results):
            writer.writerow({
                'id': txn.id,
                'transaction_date': txn.transaction_date.isoformat() if txn.transaction_date else '',
                'merchant_name': txn.merchant_name or '',
                'description': txn.description or '',
                'amount': txn.amount if txn.amount is not None else '',
                'category': result.category,
                'confidence': f"{result.confidence:.3f}",
                'method': result.method,
                'needs_review': result.needs_review,
                'patterns': '; '.join(result.patterns),
            })


def print_results(transactions, results):
    """Print sample results and the review queue summary"""
    print(f"\n📋 Sample Results (first 10):")
    for i, (txn, result) in enumerate(list(zip(transactions, results))[:10], 1):
        status = "✅" if not result.needs_review else "⚠️ "
        merchant = txn.merchant_name or txn.description or ''
        amount = f"${abs(txn.amount):>7.2f}" if txn.amount is not None else " " * 8
        print(f"{status} {i:2d}. {merchant[:40]:<40} → {result.category}")
        print(f"       {amount}  {result.method:<9}  {result.confidence:.0%}")

    if len(results) > 10:
        print(f"       ... and {len(results) - 10} more")

    needs_review = [(txn, result) for txn, result in zip(transactions, results) if result.needs_review]
    if needs_review:
        print(f"\n⚠️  {len(needs_review)} transactions need review:")
        for txn, result in needs_review[:5]:
            merchant = txn.merchant_name or txn.description or ''
            print(f"   • {merchant[:50]:<50} {result.category}")
        if len(needs_review) > 5:
            print(f"   ... and {len(needs_review) - 5} more")
    else:
        print(f"\n✅ All transactions categorized with high confidence!")


def main(argv=None):
    """Main categorization function"""
    parser = argparse.ArgumentParser(description='Categorize a CSV of transactions')
    parser.add_argument('csv_file', help='Path to transactions CSV file')
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument('--rules', help='JSON rule file (rules are kept in memory)')
    source.add_argument('--db', action='store_true', help='Load rules from the database')
    parser.add_argument('--output', help='Write categorized transactions to this CSV')
    parser.add_argument('--no-merchants', action='store_true',
                        help='Skip merchant canonicalization')
    parser.add_argument('--review-threshold', type=float,
                        help='Confidence below which results need review (default: CATEGORIZER_REVIEW_THRESHOLD or 0.80)')
    parser.add_argument('--log-level', help='Log level (default: LOG_LEVEL env var or WARNING)')

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    csv_path = Path(args.csv_file)
    if not csv_path.exists():
        print(f"❌ File not found: {csv_path}")
        sys.exit(1)

    print("=" * 80)
    print("🏷️  TRANSACTION CATEGORIZATION")
    print("=" * 80)
    print(f"CSV File: {csv_path}")
    print(f"Rules: {'database' if args.db else args.rules}")
    print(f"Merchant canonicalization: {not args.no_merchants}")
    print("=" * 80)

    conn = None
    try:
        config = EngineConfig.from_env()

        # Load rules
        if args.db:
            print("\n🔌 Connecting to database...")
            try:
                conn = get_db_connection()
                print("   ✅ Connected")
            except psycopg2.Error as e:
                print(f"   ❌ Connection failed: {e}")
                sys.exit(1)
            store = PostgresStore(conn)
            service = RuleService(store, config=config)
        else:
            rules_path = Path(args.rules)
            if not rules_path.exists():
                print(f"❌ File not found: {rules_path}")
                sys.exit(1)
            print(f"\n📚 Loading rules from {rules_path}...")
            store = InMemoryStore()
            service = RuleService(store, config=config)
            seed_rules(service, load_rule_file(rules_path))

        cache = InMemoryRuleCache()
        service.dispatcher.subscribe(CacheInvalidator(cache))
        lookup = CachedRuleLookup(store, cache)
        print(f"   ✅ Loaded {len(lookup.active_rules())} active rules, "
              f"{len(lookup.active_composites())} composite rules")

        # Parse CSV
        print(f"\n📄 Parsing CSV file...")
        transactions = parse_transactions_csv(csv_path)
        print(f"   ✅ Parsed {len(transactions)} transactions")

        # Create orchestrator
        print(f"\n🧠 Initializing categorization engine...")
        normalizer = None if args.no_merchants else MerchantNormalizer(store, config, service.dispatcher)
        orchestrator = CategorizationOrchestrator(
            lookup,
            normalizer=normalizer,
            config=config,
            review_threshold=args.review_threshold,
        )
        print("   ✅ Ready")

        # Categorize
        print(f"\n🏷️  Categorizing {len(transactions)} transactions...")
        results = orchestrator.categorize_batch(transactions)

        # Print stats
        orchestrator.print_stats()
        print_results(transactions, results)

        if args.output:
            write_results(Path(args.output), transactions, results)
            print(f"\n💾 Wrote results to {args.output}")

        print("\n" + "=" * 80)
        print("✅ Categorization complete!")
        print("=" * 80)

    except (psycopg2.Error, CategorizerError, ValueError) as e:
        print(f"\n❌ Categorization failed: {e}")
        sys.exit(1)
    finally:
        if conn is not None:
            conn.close()


if __name__ == "__main__":
    main()
