import unittest

from safeledger import create_app
from safeledger.extensions import db
from safeledger.models import Store, StoreReconciliationSettings
from safeledger.services import settings_service
from safeledger.services.settings_service import DEFAULT_SETTINGS
from safeledger.validation import NotFoundError, ValidationError


class SettingsServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.app = create_app({
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "SQLALCHEMY_TRACK_MODIFICATIONS": False,
            "TESTING": True,
        })
        cls.ctx = cls.app.app_context()
        cls.ctx.push()
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(StoreReconciliationSettings).delete()
        db.session.query(Store).delete()
        db.session.commit()

        self.store = Store(name="Main", code="MAIN")
        db.session.add(self.store)
        db.session.commit()

    def test_missing_row_resolves_to_defaults(self):
        settings = settings_service.get_store_settings(self.store.id)

        self.assertIsNone(settings.id)
        for key, value in DEFAULT_SETTINGS.items():
            self.assertEqual(getattr(settings, key), value, key)
        self.assertEqual(db.session.query(StoreReconciliationSettings).count(), 0)

    def test_update_creates_then_patches_row(self):
        settings_service.update_store_settings(self.store.id, ledger_enabled=True, deposit_tolerance_cents="250")
        settings_service.update_store_settings(self.store.id, photo_purge_day_of_month=15)

        settings = settings_service.get_store_settings(self.store.id)
        self.assertIsNotNone(settings.id)
        self.assertTrue(settings.ledger_enabled)
        self.assertEqual(settings.deposit_tolerance_cents, 250)
        self.assertEqual(settings.photo_purge_day_of_month, 15)
        self.assertEqual(settings.photo_retention_days, 38)
        self.assertEqual(db.session.query(StoreReconciliationSettings).count(), 1)

    def test_invalid_values_rejected(self):
        bad_patches = [
            {"deposit_tolerance_cents": -1},
            {"denom_tolerance_cents": 2.5},
            {"photo_retention_days": "-3"},
            {"photo_purge_day_of_month": 0},
            {"photo_purge_day_of_month": 29},
            {"ledger_enabled": "yes"},
            {"not_a_setting": 1},
        ]
        for patch in bad_patches:
            with self.subTest(patch=patch):
                with self.assertRaises(ValidationError):
                    settings_service.update_store_settings(self.store.id, **patch)

        self.assertEqual(db.session.query(StoreReconciliationSettings).count(), 0)

    def test_unknown_store(self):
        with self.assertRaises(NotFoundError):
            settings_service.update_store_settings(self.store.id + 1000, ledger_enabled=True)


if __name__ == "__main__":
    unittest.main()
