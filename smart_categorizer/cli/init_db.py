#!/usr/bin/env python3
"""
Database initialization script

Sets up the categorizer database schema and optionally seeds rules from a
JSON rule file.
"""
import argparse
import sys
from pathlib import Path

import psycopg2

from smart_categorizer.core.rule_loader import load_rule_file, seed_rules
from smart_categorizer.core.rule_service import RuleService
from smart_categorizer.errors import CategorizerError
from smart_categorizer.storage.postgres_store import PostgresStore
from smart_categorizer.utils.db_connection import get_db_connection
from smart_categorizer.utils.logger import setup_logging

SCHEMA_FILE = Path(__file__).parent.parent / "db" / "schema.sql"


def run_sql_file(conn, sql_file: Path, description: str):
    """Execute a SQL file"""
    print(f"\n📄 {description}")
    print(f"   File: {sql_file}")

    with open(sql_file, 'r') as f:
        sql = f.read()

    cursor = conn.cursor()
    try:
        cursor.execute(sql)
        conn.commit()
        print(f"   ✅ Success")
    except psycopg2.Error as e:
        conn.rollback()
        print(f"   ❌ Error: {e}")
        raise
    finally:
        cursor.close()


def load_rules(conn, rules_file: Path):
    """Seed rules and composite rules from a JSON file"""
    print(f"\n📚 Loading rules from {rules_file}")

    data = load_rule_file(rules_file)
    service = RuleService(PostgresStore(conn))
    rules, composites = seed_rules(service, data)

    skipped = len(data['rules']) - len(rules)
    print(f"   ✅ Created {len(rules)} rules, {len(composites)} composite rules")
    if skipped:
        print(f"   ⏭️  Skipped (already present): {skipped}")


def print_summary(conn):
    """Print database summary"""
    cursor = conn.cursor()

    print("\n" + "=" * 80)
    print("📊 DATABASE SUMMARY")
    print("=" * 80)

    cursor.execute("SELECT pattern_type, COUNT(*) FROM categorization_rules GROUP BY pattern_type ORDER BY pattern_type")
    print(f"Rules:")
    for pattern_type, count in cursor.fetchall():
        print(f"  • {pattern_type}: {count}")

    cursor.execute("SELECT COUNT(*), COUNT(*) FILTER (WHERE active) FROM categorization_rules")
    total, active = cursor.fetchone()
    print(f"  Total: {total} rules ({active} active)")

    cursor.execute("SELECT COUNT(*) FROM composite_rules")
    print(f"\nComposite rules: {cursor.fetchone()[0]}")

    cursor.execute("SELECT COUNT(*) FROM canonical_merchants")
    print(f"Canonical merchants: {cursor.fetchone()[0]}")

    print("=" * 80)

    cursor.close()


def main(argv=None):
    """Main initialization function"""
    parser = argparse.ArgumentParser(description='Initialize the categorizer database')
    parser.add_argument('--rules', help='JSON rule file to seed')
    parser.add_argument('--schema', default=str(SCHEMA_FILE), help='Schema SQL file')
    parser.add_argument('--log-level', help='Log level (default: LOG_LEVEL env var or WARNING)')

    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    print("=" * 80)
    print("🚀 CATEGORIZER DATABASE INITIALIZATION")
    print("=" * 80)

    schema_file = Path(args.schema)
    rules_file = Path(args.rules) if args.rules else None

    # Check files exist
    required_files = [schema_file] + ([rules_file] if rules_file else [])
    missing = [f for f in required_files if not f.exists()]
    if missing:
        print(f"\n❌ Missing required files:")
        for f in missing:
            print(f"   • {f}")
        sys.exit(1)

    # Connect to database
    print("\n🔌 Connecting to database...")
    try:
        conn = get_db_connection()
        print("   ✅ Connected")
    except psycopg2.Error as e:
        print(f"   ❌ Connection failed: {e}")
        print("\nCheck DB_HOST, DB_PORT, DB_NAME, DB_USER and DB_PASSWORD")
        sys.exit(1)

    try:
        # 1. Create schema
        run_sql_file(conn, schema_file, "Creating database schema")

        # 2. Seed rules
        if rules_file:
            load_rules(conn, rules_file)

        # 3. Print summary
        print_summary(conn)

        print("\n✅ Database initialization complete!")
        print("\nNext steps:")
        print("  1. Categorize transactions: smart-categorize --db /path/to/transactions.csv")
        print("  2. Or use: python -m smart_categorizer.cli.categorize --db /path/to/transactions.csv")

    except (psycopg2.Error, CategorizerError, ValueError) as e:
        print(f"\n❌ Initialization failed: {e}")
        sys.exit(1)
    finally:
        conn.close()


if __name__ == "__main__":
    main()
