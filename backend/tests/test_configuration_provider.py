import unittest

from flask import Flask

from valepos.errors import ValidationError
from valepos.extensions import db
from valepos.models import SystemSetting
from valepos.services.config_service import ConfigurationProvider, parse_value


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class ConfigurationProviderTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = Flask(__name__)
        cls.app.config.update(
            SECRET_KEY="test",
            SQLALCHEMY_DATABASE_URI="sqlite:///:memory:",
            SQLALCHEMY_TRACK_MODIFICATIONS=False,
            TESTING=True,
        )
        db.init_app(cls.app)
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        from valepos import models  # noqa: F401
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(SystemSetting).delete()
        db.session.commit()
        self.clock = FakeClock()
        self.config = ConfigurationProvider(ttl_seconds=10, clock=self.clock)

    def _write_row(self, key, value, value_type="boolean", category="stock"):
        row = db.session.query(SystemSetting).filter_by(key=key).first()
        if row is None:
            row = SystemSetting(key=key, value_type=value_type, category=category, is_active=True)
            db.session.add(row)
        row.value = value
        db.session.commit()

    def test_defaults_without_rows(self):
        self.assertIs(self.config.get("stock.allow_oversell"), False)
        self.assertEqual(self.config.get("sale.reservation_timeout_minutes"), 60)
        self.assertEqual(self.config.get("stock.warehouse_priority"), "most_stock")
        self.assertIsNone(self.config.get("no.such.key"))
        self.assertEqual(self.config.get("no.such.key", "fallback"), "fallback")

    def test_cached_until_ttl(self):
        self.assertIs(self.config.get("stock.allow_oversell"), False)

        # Written behind the provider's back
        self._write_row("stock.allow_oversell", "true")
        self.assertIs(self.config.get("stock.allow_oversell"), False)

        self.clock.advance(9)
        self.assertIs(self.config.get("stock.allow_oversell"), False)

        self.clock.advance(1)
        self.assertIs(self.config.get("stock.allow_oversell"), True)

    def test_set_invalidates_only_its_key(self):
        self.config.get("stock.allow_oversell")
        self.config.get("sale.validate_stock")

        self._write_row("sale.validate_stock", "false", category="sale")
        self.config.set("stock.allow_oversell", True)
        db.session.commit()

        self.assertIs(self.config.get("stock.allow_oversell"), True)
        # Still the cached value
        self.assertIs(self.config.get("sale.validate_stock"), True)

        self.config.invalidate()
        self.assertIs(self.config.get("sale.validate_stock"), False)

    def test_set_types(self):
        row = self.config.set("sale.reservation_timeout_minutes", "45")
        self.assertEqual(row.value_type, "number")
        self.assertEqual(row.category, "sale")
        self.assertEqual(self.config.get("sale.reservation_timeout_minutes"), 45)

        row = self.config.set("printer.footer", {"lines": ["Gracias"]})
        self.assertEqual(row.value_type, "json")
        self.assertEqual(row.category, "printer")
        self.assertEqual(self.config.get("printer.footer"), {"lines": ["Gracias"]})

        with self.assertRaises(ValidationError):
            self.config.set("sale.reservation_timeout_minutes", "soon")
        with self.assertRaises(ValidationError):
            self.config.set("x.y", "1", value_type="yaml")
        db.session.rollback()

    def test_inactive_setting_falls_back_to_default(self):
        self._write_row("stock.allow_oversell", "true")
        row = db.session.query(SystemSetting).filter_by(key="stock.allow_oversell").one()
        row.is_active = False
        db.session.commit()
        self.assertIs(self.config.get("stock.allow_oversell"), False)

    def test_policies(self):
        self._write_row("stock.warehouse_priority", "warehouse_order", value_type="string")
        self._write_row("sale.validate_stock", "false", category="sale")

        stock = self.config.stock_policy()
        self.assertEqual(stock.warehouse_priority, "warehouse_order")
        self.assertFalse(stock.allow_oversell)
        self.assertTrue(self.config.effective_stock_policy().allow_oversell)

        sale = self.config.sale_policy()
        self.assertTrue(sale.create_reservation)
        self.assertFalse(sale.validate_stock)

    def test_by_category_merges_defaults(self):
        self._write_row("stock.allow_oversell", "true")
        values = self.config.by_category("stock")
        self.assertEqual(values["stock.allow_oversell"], True)
        self.assertEqual(values["stock.auto_assign_warehouse"], True)
        self.assertNotIn("sale.validate_stock", values)

    def test_list_settings_marks_defaults(self):
        self.config.set("stock.allow_oversell", True)
        db.session.commit()
        listed = {s["key"]: s for s in self.config.list_settings()}
        self.assertIsNotNone(listed["stock.allow_oversell"]["id"])
        self.assertIsNone(listed["sale.validate_stock"]["id"])
        self.assertEqual(listed["sale.validate_stock"]["parsed_value"], True)


class ParseValueTests(unittest.TestCase):

    def test_parse(self):
        self.assertIs(parse_value("TRUE", "boolean"), True)
        self.assertIs(parse_value("no", "boolean"), False)
        self.assertEqual(parse_value("2.5", "number"), 2.5)
        self.assertEqual(parse_value("3", "number"), 3)
        self.assertIsNone(parse_value("abc", "number"))
        self.assertEqual(parse_value("[1]", "json"), [1])
        self.assertIsNone(parse_value(None, "string"))
