#!/usr/bin/env python3
"""
================================================================================
                    PAPER TRADER - VIRTUAL TRADING LEDGER
================================================================================
Simulates an exchange account with virtual money: balance, positions, orders
and trades. Orders fill immediately at the requested price, a flat fee is
charged on every fill and all state is persisted through a key-value store.
================================================================================
"""

import logging
import math
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .exceptions import (InsufficientBalanceError, InsufficientPositionError, InvalidOrderError,
                         PaperTradingError, PositionNotFoundError, ValidationError)
from .settings import DEFAULT_INSTRUMENTS, FEE_RATE, STARTING_BALANCE
from .signal_engine import ALGORITHMS
from .storage import (ACCOUNT_KEY, AUTO_TRADING_CONFIG_KEY, AUTO_TRADING_RESULTS_KEY, ORDERS_KEY,
                      POSITIONS_KEY, TRADES_KEY, KeyValueStore, MemoryStore)

logger = logging.getLogger("PaperTrader")

BUY = "buy"
SELL = "sell"

PENDING = "pending"
COMPLETED = "completed"
CANCELLED = "cancelled"

ACCOUNT_ID = "paper-account-1"
AUTO_TRADING_RESULTS_LIMIT = 100

# Remaining quantities at or below this are float dust and close the position
QUANTITY_EPSILON = 1e-12


def _now() -> str:
    return datetime.now().isoformat()


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


def _is_finite(value) -> bool:
    try:
        return value is not None and math.isfinite(value)
    except TypeError:
        return False


@dataclass
class Account:
    id: str
    balance: float
    total_value: float
    created_at: str
    updated_at: str


@dataclass
class Position:
    instrument: str
    quantity: float
    avg_price: float
    total_invested: float
    current_value: float
    profit_loss: float = 0.0
    profit_loss_rate: float = 0.0


@dataclass
class Order:
    id: str
    instrument: str
    side: str  # buy or sell
    price: float
    quantity: float
    total_amount: float
    status: str
    created_at: str
    completed_at: Optional[str] = None


@dataclass
class Trade:
    id: str
    order_id: str
    instrument: str
    side: str
    price: float
    quantity: float
    total_amount: float
    fee: float
    timestamp: str


@dataclass
class AutoTradingConfig:
    enabled: bool = False
    algorithm: str = "ma_rsi"
    instruments: List[str] = field(default_factory=lambda: list(DEFAULT_INSTRUMENTS))
    investment_amount: float = 100000.0
    max_positions: int = 5
    stop_loss_pct: float = 5.0
    take_profit_pct: float = 10.0


@dataclass
class AutoTradingResult:
    instrument: str
    signal: str
    confidence: float
    price: float
    timestamp: str
    reason: str


class PaperTrader:
    """Paper trading ledger.

    One instance owns the account; every mutation runs under a single re-entrant
    lock so fills, price refreshes and manual edits never interleave.
    """

    def __init__(self, store: Optional[KeyValueStore] = None,
                 starting_balance: float = STARTING_BALANCE, fee_rate: float = FEE_RATE):
        if starting_balance < 0:
            raise ValidationError("starting_balance must be >= 0")
        self.store = store if store is not None else MemoryStore()
        self.starting_balance = starting_balance
        self.fee_rate = fee_rate
        self.callbacks: List[Callable] = []
        self._lock = threading.RLock()
        self.last_prices: Dict[str, float] = {}
        self._load()

    # ------------------------------------------------------------------
    # State loading / persistence
    # ------------------------------------------------------------------

    def _new_account(self) -> Account:
        now = _now()
        return Account(id=ACCOUNT_ID, balance=self.starting_balance,
                       total_value=self.starting_balance, created_at=now, updated_at=now)

    def _load(self):
        stored_account = self.store.get(ACCOUNT_KEY)
        if stored_account:
            self.account = Account(**stored_account)
        else:
            self.account = self._new_account()
            self.store.set(ACCOUNT_KEY, asdict(self.account))
            logger.info(f"Created paper account with balance {self.starting_balance:,.0f}")

        self.positions: Dict[str, Position] = {
            p['instrument']: Position(**p) for p in self.store.get(POSITIONS_KEY, [])
        }
        self.orders: List[Order] = [Order(**o) for o in self.store.get(ORDERS_KEY, [])]
        self.trades: List[Trade] = [Trade(**t) for t in self.store.get(TRADES_KEY, [])]

        stored_config = self.store.get(AUTO_TRADING_CONFIG_KEY)
        self.auto_trading_config = AutoTradingConfig(**stored_config) if stored_config else AutoTradingConfig()
        self.auto_trading_results = deque(
            (AutoTradingResult(**r) for r in self.store.get(AUTO_TRADING_RESULTS_KEY, [])),
            maxlen=AUTO_TRADING_RESULTS_LIMIT,
        )

        for pos in self.positions.values():
            if pos.quantity > 0:
                self.last_prices[pos.instrument] = pos.current_value / pos.quantity

    def _save_account(self):
        self.account.updated_at = _now()
        self.store.set(ACCOUNT_KEY, asdict(self.account))

    def _save_positions(self):
        self.store.set(POSITIONS_KEY, [asdict(p) for p in self.positions.values()])

    def _save_orders(self):
        self.store.set(ORDERS_KEY, [asdict(o) for o in self.orders])

    def _save_trades(self):
        self.store.set(TRADES_KEY, [asdict(t) for t in self.trades])

    def _save_auto_trading(self):
        self.store.set(AUTO_TRADING_CONFIG_KEY, asdict(self.auto_trading_config))
        self.store.set(AUTO_TRADING_RESULTS_KEY, [asdict(r) for r in self.auto_trading_results])

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def add_callback(self, callback: Callable):
        """Add callback for ledger events: cb(event_type, data)"""
        self.callbacks.append(callback)

    def remove_callback(self, callback: Callable):
        if callback in self.callbacks:
            self.callbacks.remove(callback)

    def _notify_callbacks(self, event_type: str, data: Dict):
        for cb in list(self.callbacks):
            try:
                cb(event_type, data)
            except Exception as e:
                logger.error(f"Callback error: {e}")

    # ------------------------------------------------------------------
    # Read accessors (copies, never live state)
    # ------------------------------------------------------------------

    def get_account(self) -> Account:
        with self._lock:
            return replace(self.account)

    def get_positions(self) -> List[Position]:
        with self._lock:
            return [replace(p) for p in self.positions.values()]

    def get_position(self, instrument: str) -> Optional[Position]:
        with self._lock:
            pos = self.positions.get(instrument)
            return replace(pos) if pos else None

    def has_position(self, instrument: str) -> bool:
        with self._lock:
            return instrument in self.positions

    def get_orders(self) -> List[Order]:
        with self._lock:
            return [replace(o) for o in self.orders]

    def get_trades(self) -> List[Trade]:
        with self._lock:
            return [replace(t) for t in self.trades]

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def _reject(self, error: PaperTradingError, instrument: str, side: str,
                price: float, quantity: float) -> PaperTradingError:
        logger.warning(f"REJECTED {side.upper()} {instrument} {quantity} @ {price}: {error}")
        self._notify_callbacks("REJECTED", {
            "instrument": instrument,
            "side": side,
            "price": price,
            "quantity": quantity,
            "reason": str(error),
        })
        return error

    def _validate_order(self, instrument: str, side: str, price: float, quantity: float):
        if not instrument:
            raise self._reject(InvalidOrderError("instrument is required"), instrument, side, price, quantity)
        if not _is_finite(price) or not _is_finite(quantity):
            raise self._reject(InvalidOrderError("price and quantity must be finite numbers"),
                               instrument, side, price, quantity)
        if not price or price <= 0 or not quantity or quantity <= 0:
            raise self._reject(InvalidOrderError("price and quantity must be > 0"),
                               instrument, side, price, quantity)

    def place_buy_order(self, instrument: str, price: float, quantity: float) -> Order:
        """Buy and fill immediately. Raises before any mutation when the balance
        cannot cover amount plus fee."""
        with self._lock:
            self._validate_order(instrument, BUY, price, quantity)
            total_amount = price * quantity
            fee = total_amount * self.fee_rate
            if self.account.balance < total_amount + fee:
                raise self._reject(InsufficientBalanceError(total_amount + fee, self.account.balance),
                                   instrument, BUY, price, quantity)

            order = self._create_order(instrument, BUY, price, quantity, total_amount)
            self.account.balance -= total_amount + fee

            pos = self.positions.get(instrument)
            if pos:
                pos.quantity += quantity
                pos.total_invested += total_amount
                pos.avg_price = pos.total_invested / pos.quantity
            else:
                pos = Position(instrument=instrument, quantity=quantity, avg_price=price,
                               total_invested=total_amount, current_value=total_amount)
                self.positions[instrument] = pos
            self._refresh_position(pos, price)

            return self._complete_order(order, fee)

    def place_sell_order(self, instrument: str, price: float, quantity: float) -> Order:
        """Sell from an open position and fill immediately"""
        with self._lock:
            self._validate_order(instrument, SELL, price, quantity)
            pos = self.positions.get(instrument)
            held = pos.quantity if pos else 0.0
            if pos is None or quantity - held > QUANTITY_EPSILON:
                raise self._reject(InsufficientPositionError(instrument, quantity, held),
                                   instrument, SELL, price, quantity)

            total_amount = price * quantity
            fee = total_amount * self.fee_rate
            order = self._create_order(instrument, SELL, price, quantity, total_amount)

            pos.quantity -= quantity
            if pos.quantity <= QUANTITY_EPSILON:
                del self.positions[instrument]
            else:
                pos.total_invested = pos.avg_price * pos.quantity
                self._refresh_position(pos, price)
            self.account.balance += total_amount - fee

            return self._complete_order(order, fee)

    def _create_order(self, instrument: str, side: str, price: float, quantity: float,
                      total_amount: float) -> Order:
        order = Order(id=_new_id("order"), instrument=instrument, side=side, price=price,
                      quantity=quantity, total_amount=total_amount, status=PENDING,
                      created_at=_now())
        self.orders.append(order)
        return order

    def _complete_order(self, order: Order, fee: float) -> Order:
        order.status = COMPLETED
        order.completed_at = _now()
        trade = Trade(id=_new_id("trade"), order_id=order.id, instrument=order.instrument,
                      side=order.side, price=order.price, quantity=order.quantity,
                      total_amount=order.total_amount, fee=fee, timestamp=order.completed_at)
        self.trades.append(trade)
        self.last_prices[order.instrument] = order.price
        self._recompute_total_value()

        # The fill stands in memory; the next successful save rewrites every aggregate
        try:
            self._save_account()
            self._save_positions()
            self._save_orders()
            self._save_trades()
        except OSError as e:
            logger.error(f"Failed to persist fill {order.id}: {e}")

        logger.info(f"FILLED {order.side.upper()} {order.instrument} {order.quantity:.8g} @ {order.price:,.2f} "
                    f"| Fee: {fee:,.2f} | Balance: {self.account.balance:,.2f}")
        self._notify_callbacks("FILLED", {
            "order": asdict(order),
            "trade": asdict(trade),
            "balance": self.account.balance,
        })
        return replace(order)

    # ------------------------------------------------------------------
    # Valuation
    # ------------------------------------------------------------------

    @staticmethod
    def _refresh_position(pos: Position, price: float):
        pos.current_value = pos.quantity * price
        pos.profit_loss = pos.current_value - pos.total_invested
        pos.profit_loss_rate = (pos.profit_loss / pos.total_invested * 100) if pos.total_invested else 0.0

    def _recompute_total_value(self):
        self.account.total_value = self.account.balance + sum(p.current_value for p in self.positions.values())

    def update_position_values(self, current_prices: Dict[str, float]):
        """Revalue open positions at the given prices and recompute total value.
        Instruments without a price keep their previous valuation."""
        with self._lock:
            for instrument, pos in self.positions.items():
                price = current_prices.get(instrument)
                if price and price > 0:
                    self._refresh_position(pos, price)
                    self.last_prices[instrument] = price
            self._recompute_total_value()
            self._save_positions()
            self._save_account()

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_trading_stats(self, method: str = "fifo") -> Dict:
        """Realised trading statistics.

        ``fifo`` matches every sell against the oldest open buy lots of the same
        instrument, buy fees included in the cost basis. ``index`` pairs the n-th
        buy with the n-th sell of an instrument; it ignores partial fills and lot
        sizes and is only kept as a rough approximation.
        """
        with self._lock:
            trades = list(self.trades)

        if method == "fifo":
            profits = _fifo_realized_profits(trades)
        elif method == "index":
            profits = _index_paired_profits(trades)
        else:
            raise ValueError(f"Unknown stats method '{method}'")

        total_trades = sum(1 for t in trades if t.side == SELL)
        winners = [p for p in profits if p > 0]
        losers = [p for p in profits if p <= 0]
        total_profit = sum(winners)
        total_loss = abs(sum(losers))

        peak = 0.0
        cumulative = 0.0
        max_drawdown = 0.0
        for p in profits:
            cumulative += p
            peak = max(peak, cumulative)
            max_drawdown = max(max_drawdown, peak - cumulative)

        return {
            "method": method,
            "total_trades": total_trades,
            "winning_trades": len(winners),
            "losing_trades": len(losers),
            "win_rate": round(len(winners) / total_trades * 100, 2) if total_trades else 0.0,
            "total_profit": total_profit,
            "total_loss": total_loss,
            "net_profit": total_profit - total_loss,
            "max_drawdown": max_drawdown,
        }

    # ------------------------------------------------------------------
    # Manual administration
    # ------------------------------------------------------------------

    def update_balance(self, new_balance: float):
        """Overwrite the cash balance, bypassing order semantics"""
        if not _is_finite(new_balance) or new_balance < 0:
            raise ValidationError("balance must be >= 0")
        with self._lock:
            self.account.balance = float(new_balance)
            self._recompute_total_value()
            self._save_account()
        logger.info(f"Balance set to {new_balance:,.2f}")

    def update_position_quantity(self, instrument: str, new_quantity: float):
        """Overwrite a position's quantity at its current average price.
        A quantity of 0 closes the position."""
        if not _is_finite(new_quantity) or new_quantity < 0:
            raise ValidationError("quantity must be >= 0")
        with self._lock:
            pos = self.positions.get(instrument)
            if pos is None:
                raise PositionNotFoundError(instrument)

            if new_quantity <= QUANTITY_EPSILON:
                del self.positions[instrument]
            else:
                price = self.last_prices.get(instrument) or pos.avg_price
                pos.quantity = float(new_quantity)
                pos.total_invested = pos.avg_price * pos.quantity
                self._refresh_position(pos, price)

            self._recompute_total_value()
            self._save_positions()
            self._save_account()
        logger.info(f"Position {instrument} quantity set to {new_quantity}")

    def reset_account(self):
        """Wipe everything back to a fresh account with the starting balance"""
        with self._lock:
            self.account = self._new_account()
            self.positions.clear()
            self.orders.clear()
            self.trades.clear()
            self.auto_trading_results.clear()
            self.last_prices.clear()
            self._save_account()
            self._save_positions()
            self._save_orders()
            self._save_trades()
            self._save_auto_trading()
        logger.info(f"Account reset to {self.starting_balance:,.0f}")
        self._notify_callbacks("RESET", {"balance": self.starting_balance})

    # ------------------------------------------------------------------
    # Auto-trading state
    # ------------------------------------------------------------------

    def get_auto_trading_config(self) -> AutoTradingConfig:
        with self._lock:
            cfg = self.auto_trading_config
            return replace(cfg, instruments=list(cfg.instruments))

    def update_auto_trading_config(self, **changes) -> AutoTradingConfig:
        with self._lock:
            cfg = replace(self.auto_trading_config, **changes)
            if cfg.algorithm not in ALGORITHMS:
                raise ValidationError(f"Unknown algorithm '{cfg.algorithm}'")
            if cfg.investment_amount <= 0:
                raise ValidationError("investment_amount must be > 0")
            if cfg.max_positions < 1:
                raise ValidationError("max_positions must be >= 1")
            if cfg.stop_loss_pct < 0 or cfg.take_profit_pct < 0:
                raise ValidationError("stop_loss_pct and take_profit_pct must be >= 0")
            cfg.instruments = list(dict.fromkeys(cfg.instruments))
            self.auto_trading_config = cfg
            self._save_auto_trading()
            return self.get_auto_trading_config()

    def get_auto_trading_results(self) -> List[AutoTradingResult]:
        with self._lock:
            return list(self.auto_trading_results)

    def add_auto_trading_result(self, result: AutoTradingResult):
        with self._lock:
            self.auto_trading_results.append(result)
            self._save_auto_trading()

    def print_summary(self):
        """Print trading summary"""
        stats = self.get_trading_stats()
        account = self.get_account()

        print("\n" + "=" * 60)
        print("  PAPER TRADING SUMMARY")
        print("=" * 60)
        print(f"  Total Trades:   {stats['total_trades']}")
        print(f"  Winners:        {stats['winning_trades']}")
        print(f"  Losers:         {stats['losing_trades']}")
        print(f"  Win Rate:       {stats['win_rate']}%")
        print(f"  Net Profit:     {stats['net_profit']:,.0f}")
        print(f"  Balance:        {account.balance:,.0f}")
        print(f"  Total Value:    {account.total_value:,.0f}")
        print("=" * 60)

        positions = self.get_positions()
        if positions:
            print("\n  OPEN POSITIONS:")
            for pos in positions:
                print(f"    {pos.instrument}: {pos.quantity:.8g} @ {pos.avg_price:,.2f} "
                      f"({pos.profit_loss_rate:+.2f}%)")


def _fifo_realized_profits(trades: List[Trade]) -> List[float]:
    lots: Dict[str, deque] = {}
    profits = []
    for t in trades:
        book = lots.setdefault(t.instrument, deque())
        if t.side == BUY:
            # [remaining quantity, price, fee per unit]
            book.append([t.quantity, t.price, t.fee / t.quantity])
            continue

        remaining = t.quantity
        cost = 0.0
        while remaining > QUANTITY_EPSILON and book:
            lot = book[0]
            take = min(lot[0], remaining)
            cost += take * (lot[1] + lot[2])
            lot[0] -= take
            remaining -= take
            if lot[0] <= QUANTITY_EPSILON:
                book.popleft()
        profits.append(t.total_amount - t.fee - cost)
    return profits


def _index_paired_profits(trades: List[Trade]) -> List[float]:
    by_instrument: Dict[str, Dict[str, List[Trade]]] = {}
    for t in trades:
        by_instrument.setdefault(t.instrument, {BUY: [], SELL: []})[t.side].append(t)

    profits = []
    for sides in by_instrument.values():
        for buy, sell in zip(sides[BUY], sides[SELL]):
            profits.append(sell.total_amount - buy.total_amount - buy.fee - sell.fee)
    return profits
