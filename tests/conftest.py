"""
Shared fixtures
"""
from datetime import datetime
from decimal import Decimal

import pytest

from smart_categorizer.core.events import EventDispatcher
from smart_categorizer.core.match_input import Transaction
from smart_categorizer.core.rule_matcher import Rule
from smart_categorizer.core.rule_service import RuleService
from smart_categorizer.storage.memory_store import InMemoryStore


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def dispatcher():
    return EventDispatcher()


@pytest.fixture
def service(store, dispatcher):
    return RuleService(store, dispatcher)


@pytest.fixture
def make_rule(service):
    """Create and persist a rule through the service"""
    def _make(category='Dining', pattern_type='merchant', pattern_value='starbucks', **kwargs):
        return service.create_rule(Rule(
            category=category, pattern_type=pattern_type, pattern_value=pattern_value, **kwargs
        ))
    return _make


@pytest.fixture
def make_transaction():
    def _make(merchant_name='STARBUCKS #1234', description='Coffee', amount='4.50',
              transaction_date=datetime(2025, 1, 15, 8, 30), id=1):
        return Transaction(
            merchant_name=merchant_name,
            description=description,
            amount=Decimal(amount) if amount is not None else None,
            transaction_date=transaction_date,
            id=id,
        )
    return _make
