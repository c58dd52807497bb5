from .user import User
from .position import Position
from .transaction import Transaction
