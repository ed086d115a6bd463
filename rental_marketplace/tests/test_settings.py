import unittest
from decimal import Decimal

from rental_marketplace.config import (
    Settings,
    SettingsProvider,
    load_settings_from_env,
    parse_setting_value,
)
from rental_marketplace.models.rental_models import SystemSetting

from rental_support import DatabaseTestCase


class EnvSettingsTests(unittest.TestCase):
    def test_database_url_is_required(self):
        with self.assertRaises(RuntimeError) as ctx:
            load_settings_from_env({"RENTAL_DB_URL": "  "})
        self.assertIn("RENTAL_DB_URL", str(ctx.exception))

    def test_defaults(self):
        settings = load_settings_from_env({"RENTAL_DB_URL": "sqlite+pysqlite:///:memory:"})
        self.assertEqual(settings.gst_rate, Decimal("0.18"))
        self.assertEqual(settings.late_fee_rate, Decimal("0.20"))
        self.assertEqual(settings.invoice_due_days, 7)
        self.assertIsNone(settings.min_rental_days)
        self.assertEqual(settings.max_rental_days, 365)
        self.assertIn("http://localhost:5173", settings.cors_allow_origins)
        self.assertTrue(settings.cors_allow_credentials)

    def test_wildcard_origin_disables_credentials(self):
        settings = load_settings_from_env(
            {
                "RENTAL_DB_URL": "sqlite+pysqlite:///:memory:",
                "CORS_ALLOW_ORIGINS": "*",
                "CORS_ALLOW_CREDENTIALS": "true",
            }
        )
        self.assertEqual(settings.cors_allow_origins, ["*"])
        self.assertFalse(settings.cors_allow_credentials)

    def test_overrides_from_env(self):
        settings = load_settings_from_env(
            {
                "RENTAL_DB_URL": "sqlite+pysqlite:///:memory:",
                "RENTAL_GST_RATE": "0.05",
                "RENTAL_MIN_RENTAL_DAYS": "1",
                "RENTAL_MAX_RENTAL_DAYS": "off",
                "RENTAL_CURRENCY": "eur ",
            }
        )
        self.assertEqual(settings.gst_rate, Decimal("0.05"))
        self.assertEqual(settings.min_rental_days, 1)
        self.assertIsNone(settings.max_rental_days)
        self.assertEqual(settings.currency, "EUR")


class ParseSettingValueTests(unittest.TestCase):
    def test_typed_values(self):
        self.assertEqual(parse_setting_value("18", "NUMBER"), Decimal("18"))
        self.assertEqual(parse_setting_value("not a number", "number"), Decimal("0"))
        self.assertTrue(parse_setting_value("TRUE", "BOOLEAN"))
        self.assertFalse(parse_setting_value("no", "BOOLEAN"))
        self.assertEqual(parse_setting_value('{"a": 1}', "JSON"), {"a": 1})
        self.assertIsNone(parse_setting_value("{broken", "JSON"))
        self.assertEqual(parse_setting_value("INR", None), "INR")
        self.assertIsNone(parse_setting_value(None, "NUMBER"))


class SettingsProviderTests(DatabaseTestCase):
    def test_rows_override_the_environment(self):
        self.db.add_all(
            [
                SystemSetting(SettingKey="gst_rate", SettingValue="0.12", DataType="NUMBER"),
                SystemSetting(SettingKey="late_fee_percentage", SettingValue="25", DataType="NUMBER"),
                SystemSetting(SettingKey="currency", SettingValue="usd", DataType="STRING"),
                SystemSetting(SettingKey="max_rental_days", SettingValue="30", DataType="STRING"),
            ]
        )
        self.db.commit()

        provider = SettingsProvider(self.settings, self.session_factory)
        current = provider.current
        self.assertEqual(current.gst_rate, Decimal("0.12"))
        self.assertEqual(current.late_fee_rate, Decimal("0.25"))
        self.assertEqual(current.currency, "USD")
        self.assertEqual(current.max_rental_days, 30)
        self.assertEqual(provider.base.gst_rate, Decimal("0.18"))

        row = self.db.get(SystemSetting, "gst_rate")
        row.SettingValue = "0.28"
        self.db.commit()
        self.assertEqual(provider.current.gst_rate, Decimal("0.12"))
        self.assertEqual(provider.reload().gst_rate, Decimal("0.28"))

    def test_malformed_rows_are_skipped(self):
        self.db.add_all(
            [
                SystemSetting(SettingKey="invoice_due_days", SettingValue="seven", DataType="STRING"),
                SystemSetting(SettingKey="gst_rate", SettingValue="eighteen", DataType="STRING"),
                SystemSetting(SettingKey="reminder_days_ahead", SettingValue="1.5", DataType="NUMBER"),
                SystemSetting(SettingKey="max_rental_days", SettingValue="12", DataType="NUMBER"),
            ]
        )
        self.db.commit()

        provider = SettingsProvider(self.settings, self.session_factory)
        with self.assertLogs("rental_marketplace.settings", level="WARNING") as logs:
            settings = provider.reload()

        self.assertEqual(settings.invoice_due_days, 7)
        self.assertEqual(settings.gst_rate, Decimal("0.18"))
        self.assertEqual(settings.reminder_days_ahead, 2)
        self.assertEqual(settings.max_rental_days, 12)
        self.assertEqual(len([line for line in logs.output if "malformed" in line]), 3)

    def test_without_a_session_factory_the_base_is_used(self):
        base = Settings(database_url=self.database_url, currency="GBP")
        provider = SettingsProvider(base)
        self.assertIs(provider.current, base)


if __name__ == "__main__":
    unittest.main()
