import unittest

from flask import Flask

from inventory_cutover.extensions import db
from inventory_cutover.models import Product, Supplier, SupplierCostHistory, SupplierProduct
from inventory_cutover.services import supplier_service
from inventory_cutover.services.supplier_service import SupplierValidationError


class SupplierServiceTests(unittest.TestCase):
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
        from inventory_cutover import models  # noqa: F401
        db.create_all()

    @classmethod
    def tearDownClass(cls):
        db.session.remove()
        db.drop_all()
        cls.ctx.pop()

    def setUp(self):
        db.session.query(SupplierCostHistory).delete()
        db.session.query(SupplierProduct).delete()
        db.session.query(Supplier).delete()
        db.session.query(Product).delete()
        db.session.commit()

        self.product = Product(name="Paracetamol 500mg", is_active=True)
        self.other_product = Product(name="Ibuprofeno 400mg", is_active=True)
        db.session.add_all([self.product, self.other_product])
        db.session.commit()

    def test_normalize_supplier_name(self):
        self.assertEqual(supplier_service.normalize_supplier_name("  Compra   Céntér! "), "compra center")
        self.assertEqual(supplier_service.normalize_supplier_name(None), "")

    def test_find_or_create_is_idempotent_by_normalized_name(self):
        first = supplier_service.find_or_create_supplier(name="Compra Center")
        second = supplier_service.find_or_create_supplier(name="compra  center")
        db.session.commit()

        self.assertEqual(first.id, second.id)
        self.assertEqual(db.session.query(Supplier).count(), 1)

    def test_find_or_create_reactivates_inactive_supplier(self):
        supplier = supplier_service.find_or_create_supplier(name="Rx Pharma")
        supplier.is_active = False
        db.session.commit()

        again = supplier_service.find_or_create_supplier(name="RX PHARMA")

        self.assertEqual(again.id, supplier.id)
        self.assertTrue(again.is_active)

    def test_find_or_create_rejects_blank_names(self):
        with self.assertRaises(SupplierValidationError) as ctx:
            supplier_service.find_or_create_supplier(name="   ")
        self.assertEqual(ctx.exception.code, "SUPPLIER_NAME_REQUIRED")

        with self.assertRaises(SupplierValidationError) as ctx:
            supplier_service.find_or_create_supplier(name="$$$")
        self.assertEqual(ctx.exception.code, "SUPPLIER_NAME_INVALID")

    def test_initials_are_merged_without_case_duplicates(self):
        supplier = supplier_service.find_or_create_supplier(name="Compra Center", initials=["CC"])
        supplier_service.add_supplier_initials(supplier=supplier, initials=["cc", "C.C"])
        db.session.commit()

        self.assertEqual(supplier.initials, ["CC", "C.C"])

    def test_suggest_scores(self):
        supplier_service.find_or_create_supplier(name="Compra Center", initials=["CC"])
        supplier_service.find_or_create_supplier(name="Compra Rapida")
        supplier_service.find_or_create_supplier(name="Farmacia Centro Compra")
        supplier_service.find_or_create_supplier(name="Laboratorio Bayer")
        db.session.commit()

        suggestions = supplier_service.suggest_suppliers("compra")
        scores = {s["name"]: s["score"] for s in suggestions}

        self.assertEqual(scores["Compra Center"], supplier_service.SCORE_PREFIX)
        self.assertEqual(scores["Compra Rapida"], supplier_service.SCORE_PREFIX)
        self.assertEqual(scores["Farmacia Centro Compra"], supplier_service.SCORE_CONTAINS)
        self.assertNotIn("Laboratorio Bayer", scores)

        exact = supplier_service.suggest_suppliers("Compra Center")
        self.assertEqual(exact[0]["name"], "Compra Center")
        self.assertEqual(exact[0]["score"], supplier_service.SCORE_EXACT)

        by_initials = supplier_service.suggest_suppliers("cc")
        self.assertEqual(by_initials[0]["name"], "Compra Center")
        self.assertEqual(by_initials[0]["score"], supplier_service.SCORE_EXACT)

    def test_suggest_respects_limit_and_blank_terms(self):
        for name in ("Alpha Uno", "Alpha Dos", "Alpha Tres"):
            supplier_service.find_or_create_supplier(name=name)
        db.session.commit()

        self.assertEqual(len(supplier_service.suggest_suppliers("alpha", limit=2)), 2)
        self.assertEqual(supplier_service.suggest_suppliers("   "), [])

    def test_infer_supplier_prefers_session_map(self):
        supplier_service.find_or_create_supplier(name="Compra Center", initials=["CC"])
        db.session.commit()

        self.assertEqual(supplier_service.infer_supplier_name("cc"), "Compra Center")
        self.assertEqual(
            supplier_service.infer_supplier_name("CC", {"Casa Cruz": ["cc"]}),
            "Casa Cruz",
        )
        self.assertIsNone(supplier_service.infer_supplier_name("ZZ"))

    def test_record_supplier_cost_tracks_current_entry(self):
        supplier = supplier_service.find_or_create_supplier(name="Compra Center")

        first = supplier_service.record_supplier_cost(
            supplier_id=supplier.id, product_id=self.product.id, unit_cost_cents=1000, source="MANUAL",
        )
        unchanged = supplier_service.record_supplier_cost(
            supplier_id=supplier.id, product_id=self.product.id, unit_cost_cents=1000, source="MANUAL",
        )
        second = supplier_service.record_supplier_cost(
            supplier_id=supplier.id, product_id=self.product.id, unit_cost_cents=1200, source="EXTRACTED",
        )
        db.session.commit()

        self.assertIsNotNone(first)
        self.assertIsNone(unchanged)
        self.assertFalse(first.is_current)
        self.assertTrue(second.is_current)
        link = db.session.query(SupplierProduct).filter_by(supplier_id=supplier.id, product_id=self.product.id).one()
        self.assertEqual(link.cost_cents, 1200)
        self.assertEqual(db.session.query(SupplierCostHistory).count(), 2)

    def test_record_supplier_cost_rejects_negative(self):
        supplier = supplier_service.find_or_create_supplier(name="Compra Center")

        with self.assertRaises(SupplierValidationError):
            supplier_service.record_supplier_cost(
                supplier_id=supplier.id, product_id=self.product.id, unit_cost_cents=-1, source="MANUAL",
            )

    def test_set_preferred_supplier_is_exclusive(self):
        first = supplier_service.find_or_create_supplier(name="Compra Center")
        second = supplier_service.find_or_create_supplier(name="Rx Pharma")
        for supplier in (first, second):
            supplier_service.record_supplier_cost(
                supplier_id=supplier.id, product_id=self.product.id, unit_cost_cents=900, source="MANUAL",
            )
        db.session.flush()

        supplier_service.set_preferred_supplier(product_id=self.product.id, supplier_id=first.id)
        supplier_service.set_preferred_supplier(product_id=self.product.id, supplier_id=second.id)
        db.session.commit()

        preferred = db.session.query(SupplierProduct).filter_by(product_id=self.product.id, is_preferred=True).all()
        self.assertEqual([p.supplier_id for p in preferred], [second.id])

    def test_set_preferred_requires_link(self):
        supplier = supplier_service.find_or_create_supplier(name="Compra Center")

        with self.assertRaises(SupplierValidationError) as ctx:
            supplier_service.set_preferred_supplier(product_id=self.other_product.id, supplier_id=supplier.id)
        self.assertEqual(ctx.exception.code, "SUPPLIER_PRODUCT_NOT_FOUND")

    def test_average_supplier_costs_rounds_half_up(self):
        first = supplier_service.find_or_create_supplier(name="Compra Center")
        second = supplier_service.find_or_create_supplier(name="Rx Pharma")
        supplier_service.record_supplier_cost(
            supplier_id=first.id, product_id=self.product.id, unit_cost_cents=1000, source="MANUAL",
        )
        supplier_service.record_supplier_cost(
            supplier_id=second.id, product_id=self.product.id, unit_cost_cents=1001, source="MANUAL",
        )
        db.session.commit()

        averages = supplier_service.average_supplier_costs([self.product.id, self.other_product.id])

        self.assertEqual(averages, {self.product.id: 1001})
