"""
PostgreSQL store

psycopg2-backed implementation of the storage interfaces, using the tables
in smart_categorizer/db/schema.sql. Usage counters are incremented in SQL so
concurrent writers never lose an update. Merchant similarity uses pg_trgm
when the extension is installed.
"""
import dataclasses
import logging
from typing import List, Optional

import psycopg2
import psycopg2.errors
from psycopg2.extras import Json

from ..core.composite_rule import CompositeRule
from ..core.confidence import UsageStats
from ..core.feedback_loop import Correction
from ..core.merchant_normalizer import CanonicalMerchant, MerchantAlias
from ..core.rule_matcher import Rule
from ..errors import NotFoundError, ValidationError
from .base import CorrectionStore, MerchantStore, RuleStore

logger = logging.getLogger(__name__)

RULE_COLUMNS = """
    id, category, pattern_type, pattern_value, confidence_weight,
    usage_count, success_count, active, user_created, metadata
"""

COMPOSITE_COLUMNS = """
    id, category, name, operator, rule_ids, conditions, confidence_weight,
    usage_count, success_count, active, user_created
"""

MERCHANT_COLUMNS = """
    m.id, m.name, m.display_name, m.usage_count, m.category_hint, m.metadata,
    ARRAY(SELECT a.raw_name FROM merchant_aliases a WHERE a.canonical_merchant_id = m.id)
"""

CORRECTION_COLUMNS = """
    id, transaction_id, category, rule_id, was_correct, confidence, kind, created_at
"""


def row_to_rule(row) -> Rule:
    return Rule(
        id=row[0],
        category=row[1],
        pattern_type=row[2],
        pattern_value=row[3],
        confidence_weight=float(row[4]),
        stats=UsageStats(row[5], row[6]),
        active=row[7],
        user_created=row[8],
        metadata=row[9] or {},
    )


def row_to_composite(row) -> CompositeRule:
    return CompositeRule(
        id=row[0],
        category=row[1],
        name=row[2],
        operator=row[3],
        rule_ids=list(row[4] or []),
        conditions=row[5] or {},
        confidence_weight=float(row[6]),
        stats=UsageStats(row[7], row[8]),
        active=row[9],
        user_created=row[10],
    )


def row_to_merchant(row) -> CanonicalMerchant:
    return CanonicalMerchant(
        id=row[0],
        name=row[1],
        display_name=row[2],
        usage_count=row[3],
        category_hint=row[4],
        metadata=row[5] or {},
        aliases=set(row[6] or []),
    )


def row_to_correction(row) -> Correction:
    return Correction(
        id=row[0],
        transaction_id=row[1],
        category=row[2],
        rule_id=row[3],
        was_correct=row[4],
        confidence=row[5],
        kind=row[6],
        created_at=row[7],
    )


class PostgresStore(RuleStore, MerchantStore, CorrectionStore):
    """Rule, merchant and correction store over a psycopg2 connection"""

    def __init__(self, conn):
        """
        Args:
            conn: psycopg2 connection (see utils.db_connection.get_db_connection)
        """
        self.conn = conn
        self._has_trigram: Optional[bool] = None

    def _execute(self, sql: str, params=None, fetch: Optional[str] = None):
        """
        Run one statement in its own transaction

        Args:
            sql: SQL text with %s placeholders
            params: Query parameters
            fetch: None, 'one' or 'all'

        Returns:
            Fetched row(s), or the affected row count when fetch is None
        """
        cursor = self.conn.cursor()
        try:
            cursor.execute(sql, params)
            if fetch == 'one':
                result = cursor.fetchone()
            elif fetch == 'all':
                result = cursor.fetchall()
            else:
                result = cursor.rowcount
            self.conn.commit()
            return result
        except psycopg2.Error:
            self.conn.rollback()
            raise
        finally:
            cursor.close()

    # Rules

    def create_rule(self, rule: Rule) -> Rule:
        try:
            row = self._execute(f"""
                INSERT INTO categorization_rules (
                    category, pattern_type, pattern_value, confidence_weight,
                    usage_count, success_count, active, user_created, metadata
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {RULE_COLUMNS}
            """, (
                str(rule.category), rule.pattern_type, rule.pattern_value, rule.confidence_weight,
                rule.usage_count, rule.success_count, rule.active, rule.user_created,
                Json(rule.metadata),
            ), fetch='one')
        except psycopg2.errors.UniqueViolation:
            raise ValidationError("Invalid rule", {'pattern_value': ["has already been taken"]})
        return row_to_rule(row)

    def get_rule(self, rule_id: int) -> Optional[Rule]:
        row = self._execute(
            f"SELECT {RULE_COLUMNS} FROM categorization_rules WHERE id = %s", (rule_id,), fetch='one'
        )
        return row_to_rule(row) if row else None

    def get_rules(self, rule_ids: List[int]) -> List[Rule]:
        if not rule_ids:
            return []
        rows = self._execute(
            f"SELECT {RULE_COLUMNS} FROM categorization_rules WHERE id = ANY(%s)",
            (list(rule_ids),), fetch='all'
        )
        found = {row[0]: row_to_rule(row) for row in rows}
        return [found[rule_id] for rule_id in rule_ids if rule_id in found]

    def update_rule(self, rule: Rule) -> Rule:
        try:
            row = self._execute(f"""
                UPDATE categorization_rules
                SET category = %s, pattern_type = %s, pattern_value = %s,
                    confidence_weight = %s, active = %s, user_created = %s,
                    metadata = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING {RULE_COLUMNS}
            """, (
                str(rule.category), rule.pattern_type, rule.pattern_value, rule.confidence_weight,
                rule.active, rule.user_created, Json(rule.metadata), rule.id,
            ), fetch='one')
        except psycopg2.errors.UniqueViolation:
            raise ValidationError("Invalid rule", {'pattern_value': ["has already been taken"]})
        if row is None:
            raise NotFoundError('Rule', rule.id)
        return row_to_rule(row)

    def delete_rule(self, rule_id: int) -> bool:
        return self._execute("DELETE FROM categorization_rules WHERE id = %s", (rule_id,)) > 0

    def find_rule(self, category, pattern_type: str, pattern_value: str) -> Optional[Rule]:
        row = self._execute(f"""
            SELECT {RULE_COLUMNS} FROM categorization_rules
            WHERE category = %s AND pattern_type = %s
              AND lower(btrim(pattern_value)) = %s
            ORDER BY id
            LIMIT 1
        """, (str(category), pattern_type, (pattern_value or '').strip().lower()), fetch='one')
        return row_to_rule(row) if row else None

    def active_rules(self) -> List[Rule]:
        rows = self._execute(
            f"SELECT {RULE_COLUMNS} FROM categorization_rules WHERE active = TRUE ORDER BY id",
            fetch='all'
        )
        return [row_to_rule(row) for row in rows]

    def all_rules(self) -> List[Rule]:
        rows = self._execute(f"SELECT {RULE_COLUMNS} FROM categorization_rules ORDER BY id", fetch='all')
        return [row_to_rule(row) for row in rows]

    def increment_rule_usage(self, rule_id: int, successful: bool) -> UsageStats:
        row = self._execute("""
            UPDATE categorization_rules
            SET usage_count = usage_count + 1,
                success_count = success_count + %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING usage_count, success_count
        """, (1 if successful else 0, rule_id), fetch='one')
        if row is None:
            raise NotFoundError('Rule', rule_id)
        return UsageStats(row[0], row[1])

    # Composite rules

    def create_composite(self, composite: CompositeRule) -> CompositeRule:
        row = self._execute(f"""
            INSERT INTO composite_rules (
                category, name, operator, rule_ids, conditions, confidence_weight,
                usage_count, success_count, active, user_created
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING {COMPOSITE_COLUMNS}
        """, (
            str(composite.category), composite.name, composite.operator, list(composite.rule_ids),
            Json(composite.conditions or {}), composite.confidence_weight,
            composite.usage_count, composite.success_count, composite.active, composite.user_created,
        ), fetch='one')
        return row_to_composite(row)

    def get_composite(self, composite_id: int) -> Optional[CompositeRule]:
        row = self._execute(
            f"SELECT {COMPOSITE_COLUMNS} FROM composite_rules WHERE id = %s", (composite_id,), fetch='one'
        )
        return row_to_composite(row) if row else None

    def update_composite(self, composite: CompositeRule) -> CompositeRule:
        row = self._execute(f"""
            UPDATE composite_rules
            SET category = %s, name = %s, operator = %s, rule_ids = %s, conditions = %s,
                confidence_weight = %s, active = %s, user_created = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING {COMPOSITE_COLUMNS}
        """, (
            str(composite.category), composite.name, composite.operator, list(composite.rule_ids),
            Json(composite.conditions or {}), composite.confidence_weight,
            composite.active, composite.user_created, composite.id,
        ), fetch='one')
        if row is None:
            raise NotFoundError('CompositeRule', composite.id)
        return row_to_composite(row)

    def delete_composite(self, composite_id: int) -> bool:
        return self._execute("DELETE FROM composite_rules WHERE id = %s", (composite_id,)) > 0

    def active_composites(self) -> List[CompositeRule]:
        rows = self._execute(
            f"SELECT {COMPOSITE_COLUMNS} FROM composite_rules WHERE active = TRUE ORDER BY id",
            fetch='all'
        )
        return [row_to_composite(row) for row in rows]

    def all_composites(self) -> List[CompositeRule]:
        rows = self._execute(f"SELECT {COMPOSITE_COLUMNS} FROM composite_rules ORDER BY id", fetch='all')
        return [row_to_composite(row) for row in rows]

    def increment_composite_usage(self, composite_id: int, successful: bool) -> UsageStats:
        row = self._execute("""
            UPDATE composite_rules
            SET usage_count = usage_count + 1,
                success_count = success_count + %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING usage_count, success_count
        """, (1 if successful else 0, composite_id), fetch='one')
        if row is None:
            raise NotFoundError('CompositeRule', composite_id)
        return UsageStats(row[0], row[1])

    # Merchants

    @property
    def supports_similarity(self) -> bool:
        if self._has_trigram is None:
            row = self._execute("SELECT 1 FROM pg_extension WHERE extname = 'pg_trgm'", fetch='one')
            self._has_trigram = row is not None
            if not self._has_trigram:
                logger.warning("pg_trgm is not installed, merchant matching falls back to exact names")
        return self._has_trigram

    def similarity(self, first: str, second: str) -> float:
        row = self._execute("SELECT similarity(%s, %s)", (first, second), fetch='one')
        return float(row[0])

    def get_merchant(self, merchant_id: int) -> Optional[CanonicalMerchant]:
        row = self._execute(
            f"SELECT {MERCHANT_COLUMNS} FROM canonical_merchants m WHERE m.id = %s",
            (merchant_id,), fetch='one'
        )
        return row_to_merchant(row) if row else None

    def find_merchant_by_name(self, name: str) -> Optional[CanonicalMerchant]:
        row = self._execute(
            f"SELECT {MERCHANT_COLUMNS} FROM canonical_merchants m WHERE lower(m.name) = %s",
            (name.strip().lower(),), fetch='one'
        )
        return row_to_merchant(row) if row else None

    def find_similar_merchant(self, name: str, threshold: float) -> Optional[CanonicalMerchant]:
        row = self._execute(f"""
            SELECT {MERCHANT_COLUMNS}
            FROM canonical_merchants m
            WHERE similarity(m.name, %s) > %s
            ORDER BY similarity(m.name, %s) DESC, m.id
            LIMIT 1
        """, (name, threshold, name), fetch='one')
        return row_to_merchant(row) if row else None

    def find_merchant_by_alias(self, raw_name: str) -> Optional[CanonicalMerchant]:
        row = self._execute(f"""
            SELECT {MERCHANT_COLUMNS}
            FROM canonical_merchants m
            JOIN merchant_aliases alias ON alias.canonical_merchant_id = m.id
            WHERE alias.raw_name = %s
        """, (raw_name,), fetch='one')
        return row_to_merchant(row) if row else None

    def find_merchant_by_normalized_alias(self, normalized_name: str) -> Optional[CanonicalMerchant]:
        row = self._execute(f"""
            SELECT {MERCHANT_COLUMNS}
            FROM canonical_merchants m
            JOIN merchant_aliases alias ON alias.canonical_merchant_id = m.id
            WHERE alias.normalized_name = %s
            ORDER BY alias.confidence DESC, alias.id
            LIMIT 1
        """, (normalized_name,), fetch='one')
        return row_to_merchant(row) if row else None

    def get_or_create_merchant(self, name: str, display_name: str) -> CanonicalMerchant:
        self._execute("""
            INSERT INTO canonical_merchants (name, display_name)
            VALUES (%s, %s)
            ON CONFLICT ((lower(name))) DO NOTHING
        """, (name, display_name))
        return self.find_merchant_by_name(name)

    def add_merchant_alias(self, alias: MerchantAlias) -> CanonicalMerchant:
        self._execute("""
            INSERT INTO merchant_aliases (raw_name, normalized_name, canonical_merchant_id, confidence)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (raw_name) DO NOTHING
        """, (alias.raw_name, alias.normalized_name, alias.merchant_id, alias.confidence))
        return self.find_merchant_by_alias(alias.raw_name)

    def increment_merchant_usage(self, merchant_id: int) -> CanonicalMerchant:
        count = self._execute(
            "UPDATE canonical_merchants SET usage_count = usage_count + 1 WHERE id = %s", (merchant_id,)
        )
        if count == 0:
            raise NotFoundError('CanonicalMerchant', merchant_id)
        return self.get_merchant(merchant_id)

    def merge_merchants(self, target_id: int, other_id: int) -> CanonicalMerchant:
        if target_id == other_id:
            merchant = self.get_merchant(target_id)
            if merchant is None:
                raise NotFoundError('CanonicalMerchant', target_id)
            return merchant

        cursor = self.conn.cursor()
        try:
            cursor.execute("""
                UPDATE canonical_merchants target
                SET usage_count = target.usage_count + other.usage_count,
                    metadata = target.metadata || other.metadata,
                    display_name = COALESCE(NULLIF(btrim(target.display_name), ''), other.display_name),
                    category_hint = COALESCE(NULLIF(btrim(target.category_hint), ''), other.category_hint)
                FROM canonical_merchants other
                WHERE target.id = %s AND other.id = %s
            """, (target_id, other_id))
            if cursor.rowcount == 0:
                raise NotFoundError('CanonicalMerchant', f"{target_id} or {other_id}")
            cursor.execute(
                "UPDATE merchant_aliases SET canonical_merchant_id = %s WHERE canonical_merchant_id = %s",
                (target_id, other_id)
            )
            cursor.execute("DELETE FROM canonical_merchants WHERE id = %s", (other_id,))
            self.conn.commit()
        except (psycopg2.Error, NotFoundError):
            self.conn.rollback()
            raise
        finally:
            cursor.close()
        return self.get_merchant(target_id)

    def all_merchants(self) -> List[CanonicalMerchant]:
        rows = self._execute(f"SELECT {MERCHANT_COLUMNS} FROM canonical_merchants m ORDER BY m.id", fetch='all')
        return [row_to_merchant(row) for row in rows]

    # Corrections

    def save_correction(self, correction: Correction) -> Correction:
        row = self._execute("""
            INSERT INTO rule_corrections (
                transaction_id, category, rule_id, was_correct, confidence, kind, created_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id
        """, (
            None if correction.transaction_id is None else str(correction.transaction_id),
            str(correction.category), correction.rule_id, correction.was_correct,
            correction.confidence, correction.kind, correction.created_at,
        ), fetch='one')
        return dataclasses.replace(correction, id=row[0])

    def list_corrections(self, rule_id: Optional[int] = None) -> List[Correction]:
        if rule_id is None:
            rows = self._execute(f"SELECT {CORRECTION_COLUMNS} FROM rule_corrections ORDER BY id", fetch='all')
        else:
            rows = self._execute(
                f"SELECT {CORRECTION_COLUMNS} FROM rule_corrections WHERE rule_id = %s ORDER BY id",
                (rule_id,), fetch='all'
            )
        return [row_to_correction(row) for row in rows]
