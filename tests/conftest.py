"""Test configuration and fixtures."""

import os
import sys
import unittest
from datetime import date
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add the project root to the Python path
sys.path.insert(0, os.path.abspath(os.path.dirname(os.path.dirname(__file__))))

from dues_engine.db import models
from dues_engine.db.models import Base
from dues_engine.db.ledger import SqlLedger
from dues_engine.db.session import make_session_scope

# One shared in-memory SQLite connection for the whole test run
test_engine = create_engine(
    "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
test_session_scope = make_session_scope(TestSessionLocal)


def setup_test_db():
    """Create all tables in the test database."""
    Base.metadata.create_all(bind=test_engine)


def teardown_test_db():
    """Drop all tables from the test database."""
    Base.metadata.drop_all(bind=test_engine)


class BaseTestCase(unittest.TestCase):
    """Base test case with a fresh schema and a SqlLedger per test."""

    def setUp(self):
        setup_test_db()
        self.db = TestSessionLocal()
        self.ledger = SqlLedger(session_scope=test_session_scope)

    def tearDown(self):
        self.db.close()
        teardown_test_db()

    def add_member(self, member_id="m1", chapter_id="c1", name="Alex Doe", eligible=False):
        member = models.Member(
            id=member_id,
            chapter_id=chapter_id,
            full_name=name,
            email=f"{member_id}@example.org",
            installment_eligible=eligible,
        )
        self.db.add(member)
        self.db.commit()
        return member

    def add_dues(self, dues_id, member_id="m1", chapter_id="c1", base="100.00", late_fee="0",
                 paid="0", status="pending", deadline=None):
        record = models.MemberDuesRecord(
            id=dues_id,
            member_id=member_id,
            chapter_id=chapter_id,
            base_amount=Decimal(base),
            late_fee=Decimal(late_fee),
            adjustments=Decimal("0"),
            amount_paid=Decimal(paid),
            status=status,
            flexible_plan_deadline=deadline,
        )
        record.recompute_balance()
        self.db.add(record)
        self.db.commit()
        return record


TODAY = date(2026, 3, 1)
