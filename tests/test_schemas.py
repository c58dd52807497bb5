import unittest
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from portfolio_tracker.models.enums import AssetClass, TransactionKind
from portfolio_tracker.schemas.position import PositionCreate, PositionUpdate
from portfolio_tracker.schemas.transaction import TransactionCreate
from tests.fakes import T0


def _position(**overrides):
    data = {"symbol": "AAPL", "name": "Apple Inc.", "asset_class": "stock", "current_price": 189.5}
    data.update(overrides)
    return PositionCreate(**data)


def _tx(**overrides):
    data = {"position_id": 1, "kind": "buy", "quantity": 1, "price_per_unit": 10.0, "occurred_at": T0}
    data.update(overrides)
    return TransactionCreate(**data)


class PositionSchemaTests(unittest.TestCase):
    def test_symbol_normalized(self):
        self.assertEqual(_position(symbol="  brk-b ").symbol, "BRK-B")
        self.assertEqual(_position(symbol="x").symbol, "X")
        self.assertEqual(_position(asset_class="crypto").asset_class, AssetClass.CRYPTO)

    def test_bad_symbols(self):
        for symbol in ("", "1ABC", "TOOLONGSYMBOL", "AB.C", "A B"):
            with self.subTest(symbol=symbol):
                with self.assertRaises(ValidationError):
                    _position(symbol=symbol)

    def test_name_length(self):
        self.assertEqual(_position(name="  Apple  ").name, "Apple")
        with self.assertRaises(ValidationError):
            _position(name="   ")
        with self.assertRaises(ValidationError):
            _position(name="x" * 121)

    def test_price_floor(self):
        self.assertEqual(_position(current_price=0.01).current_price, 0.01)
        with self.assertRaises(ValidationError):
            _position(current_price=0.009)

    def test_unknown_asset_class(self):
        with self.assertRaises(ValidationError):
            _position(asset_class="bond")

    def test_opening_buy_fields(self):
        p = _position(initial_quantity=3, initial_price=150.0)
        self.assertEqual((p.initial_quantity, p.initial_price), (3.0, 150.0))
        with self.assertRaises(ValidationError):
            _position(initial_price=150.0)
        with self.assertRaises(ValidationError):
            _position(initial_quantity=0)

    def test_update_is_partial(self):
        update = PositionUpdate(current_price=12.0)
        self.assertIsNone(update.name)
        self.assertIsNone(update.asset_class)
        with self.assertRaises(ValidationError):
            PositionUpdate(current_price=0)


class TransactionSchemaTests(unittest.TestCase):
    def test_positive_amounts(self):
        for field in ("quantity", "price_per_unit"):
            for value in (0, -1):
                with self.subTest(field=field, value=value):
                    with self.assertRaises(ValidationError):
                        _tx(**{field: value})

    def test_kind(self):
        self.assertEqual(_tx(kind="sell").kind, TransactionKind.SELL)
        with self.assertRaises(ValidationError):
            _tx(kind="dividend")

    def test_occurred_at_normalized_to_utc(self):
        naive = _tx(occurred_at=datetime(2024, 1, 1, 9, 30))
        self.assertEqual(naive.occurred_at, T0)
        offset = _tx(occurred_at=datetime(2024, 1, 1, 11, 30, tzinfo=timezone(timedelta(hours=2))))
        self.assertEqual(offset.occurred_at.tzinfo, timezone.utc)
        self.assertEqual(offset.occurred_at, T0)

    def test_notes(self):
        self.assertIsNone(_tx(notes="   ").notes)
        self.assertEqual(_tx(notes=" rebalanced ").notes, "rebalanced")
        self.assertEqual(len(_tx(notes="n" * 500).notes), 500)
        with self.assertRaises(ValidationError):
            _tx(notes="n" * 501)


if __name__ == "__main__":
    unittest.main()
