"""
Multi-Currency Support Module

Decimal helpers for monetary values, the exchange-rate conversion rule shared
with the balance query, and currency management. NEVER uses float for
monetary values.
"""

from decimal import Context, Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, getcontext
from typing import List, Optional, Union

from sqlalchemy import select

from .models import Currency
from .storage import Database
from .logging_config import get_logger, log_action

# Set global decimal context for financial precision
getcontext().prec = 28  # High precision for financial calculations

MONEY_QUANTUM = Decimal('0.01')
ONE = Decimal('1')

# Digits a double holds reliably; SQLite sums come back as doubles
_FLOAT_CONTEXT = Context(prec=15, rounding=ROUND_HALF_EVEN)


def to_decimal(value: Union[Decimal, int, str]) -> Decimal:
    """
    Convert a request value to Decimal.
    
    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)) and not isinstance(value, bool):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"Cannot convert '{value}' to Decimal")
    else:
        raise ValueError(f"Unsupported monetary value type: {type(value).__name__}")
    
    if not result.is_finite():
        raise ValueError(f"Monetary value must be finite, got {value}")
    return result


def quantize_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half up"""
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def truncate_money(value: Optional[Union[Decimal, float, int]]) -> Decimal:
    """
    Truncate toward zero to 2 decimal places.
    
    Missing values (no matching rows) become 0.00. Decimal input is truncated
    exactly; float input is first cleared of binary noise.
    """
    if value is None:
        return Decimal('0.00')
    if isinstance(value, float):
        amount = _FLOAT_CONTEXT.create_decimal(repr(value))
    else:
        amount = Decimal(value)
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)


def conversion_factor(source: Currency, target: Currency) -> Decimal:
    """
    Factor applied to an amount in ``source`` to express it in ``target``.
    
    Rates are stored relative to the base currency: a target that is the base
    takes the source rate as is, any other target multiplies both rates.
    """
    if source.id == target.id:
        return ONE
    if target.base:
        return Decimal(source.current_exchange_rate)
    return Decimal(source.current_exchange_rate) * Decimal(target.current_exchange_rate)


def convert_amount(amount: Decimal, source: Currency, target: Currency) -> Decimal:
    """Convert and truncate an amount between currencies"""
    return truncate_money(amount * conversion_factor(source, target))


class CurrencyService:
    """Manages currencies and their exchange rates against the base currency"""
    
    def __init__(self, database: Database):
        self.database = database
        self.logger = get_logger("billbank.currency")
    
    def create_currency(self, name: str, exchange_rate: Union[Decimal, int, str] = ONE,
                        base: bool = False) -> Currency:
        """
        Create a currency
        
        Args:
            name: ISO 4217 code
            exchange_rate: Rate relative to the base currency (forced to 1 for the base)
            base: Whether this is the base currency
            
        Raises:
            ValueError: On a non-positive rate or a second base currency
        """
        rate = ONE if base else to_decimal(exchange_rate)
        if rate <= 0:
            raise ValueError("Exchange rate must be positive")
        
        with self.database.atomic() as session:
            if base and self._find_base_currency(session):
                raise ValueError("Base currency is already defined")
            
            currency = Currency(name=name.upper(), current_exchange_rate=rate, base=base)
            session.add(currency)
            session.flush()
        
        log_action(
            self.logger, "info", f"Currency created: {currency.name}",
            action="create_currency", resource=f"currency:{currency.uuid}",
            extra={"rate": str(rate), "base": base}
        )
        return currency
    
    def get_currency(self, name: str) -> Optional[Currency]:
        with self.database.atomic() as session:
            return session.scalar(select(Currency).where(Currency.name == name.upper()))
    
    def get_base_currency(self) -> Optional[Currency]:
        with self.database.atomic() as session:
            return self._find_base_currency(session)
    
    def get_currencies(self) -> List[Currency]:
        with self.database.atomic() as session:
            return list(session.scalars(select(Currency).order_by(Currency.name)))
    
    def update_exchange_rate(self, name: str, exchange_rate: Union[Decimal, int, str]) -> Currency:
        """
        Set a new rate relative to the base currency
        
        Raises:
            ValueError: Unknown currency, non-positive rate, or an attempt to
                move the base currency away from 1
        """
        rate = to_decimal(exchange_rate)
        if rate <= 0:
            raise ValueError("Exchange rate must be positive")
        
        with self.database.atomic() as session:
            currency = session.scalar(select(Currency).where(Currency.name == name.upper()))
            if currency is None:
                raise ValueError(f"Currency {name} not found")
            if currency.base and rate != ONE:
                raise ValueError("Base currency exchange rate is fixed at 1")
            
            previous = currency.current_exchange_rate
            currency.current_exchange_rate = rate
        
        log_action(
            self.logger, "info", f"Exchange rate updated: {currency.name}",
            action="update_exchange_rate", resource=f"currency:{currency.uuid}",
            extra={"previous": str(previous), "current": str(rate)}
        )
        return currency
    
    @staticmethod
    def _find_base_currency(session) -> Optional[Currency]:
        return session.scalar(select(Currency).where(Currency.base.is_(True)))
