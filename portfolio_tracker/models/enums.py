from enum import Enum


class AssetClass(str, Enum):
    STOCK = "stock"
    CRYPTO = "crypto"
    ETF = "etf"
    FUND = "fund"


class TransactionKind(str, Enum):
    BUY = "buy"
    SELL = "sell"
