from .user import Achievement, BalanceTransaction, Certificate, User

__all__ = ["Achievement", "BalanceTransaction", "Certificate", "User"]
