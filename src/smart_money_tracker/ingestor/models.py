"""Data models for the ingestor module."""

import contextlib
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class InvalidSwapError(ValueError):
    """Raised when a swap record is missing required fields or has bad values."""


class SwapType(str, Enum):
    """Direction of a swap from the wallet's point of view."""

    BUY = "buy"
    SELL = "sell"


def _parse_timestamp(raw: Any) -> datetime | None:
    if isinstance(raw, datetime):
        return raw if raw.tzinfo is not None else raw.replace(tzinfo=UTC)
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        ts_f = float(raw)
        if not math.isfinite(ts_f):
            return None
        if ts_f > 1e12:
            ts_f /= 1000.0
        with contextlib.suppress(OverflowError, OSError, ValueError):
            return datetime.fromtimestamp(ts_f, tz=UTC)
        return None
    if isinstance(raw, str) and raw:
        with contextlib.suppress(ValueError):
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=UTC)
            return parsed.astimezone(UTC)
    return None


@dataclass(frozen=True)
class NormalizedSwap:
    """A single on-chain swap as produced by the upstream normalizer.

    Immutable fact: one record per real swap, identified by its
    transaction id.
    """

    transaction_id: str
    wallet_address: str
    token_address: str
    token_symbol: str
    amount_usd: float
    timestamp: datetime
    swap_type: SwapType
    price: float | None = None

    @property
    def is_buy(self) -> bool:
        return self.swap_type == SwapType.BUY

    def validate(self) -> "NormalizedSwap":
        """Check field invariants.

        Returns:
            The same instance, for chaining.

        Raises:
            InvalidSwapError: If any required field is missing or invalid.
        """
        if not self.transaction_id:
            raise InvalidSwapError("swap is missing transaction_id")
        if not self.wallet_address:
            raise InvalidSwapError(f"swap {self.transaction_id} is missing wallet_address")
        if not self.token_address:
            raise InvalidSwapError(f"swap {self.transaction_id} is missing token_address")
        if not isinstance(self.amount_usd, (int, float)) or isinstance(self.amount_usd, bool):
            raise InvalidSwapError(f"swap {self.transaction_id} has non-numeric amount_usd")
        if not math.isfinite(self.amount_usd) or self.amount_usd <= 0:
            raise InvalidSwapError(
                f"swap {self.transaction_id} has non-positive amount_usd={self.amount_usd!r}"
            )
        if not isinstance(self.timestamp, datetime) or self.timestamp.tzinfo is None:
            raise InvalidSwapError(f"swap {self.transaction_id} timestamp must be timezone-aware")
        if not isinstance(self.swap_type, SwapType):
            raise InvalidSwapError(f"swap {self.transaction_id} has unknown swap_type")
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NormalizedSwap":
        """Create a NormalizedSwap from normalizer output.

        Accepts both snake_case and camelCase keys. Timestamps may be epoch
        seconds, epoch milliseconds, ISO-8601 strings or datetimes.

        Raises:
            InvalidSwapError: If the payload is incomplete or malformed.
        """
        if not isinstance(data, dict):
            raise InvalidSwapError(f"swap payload must be a mapping, got {type(data).__name__}")

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        transaction_id = pick("transaction_id", "transactionId", "signature", "tx_hash")
        raw_type = pick("swap_type", "swapType", "side")
        try:
            swap_type = SwapType(str(raw_type).lower())
        except ValueError:
            raise InvalidSwapError(f"swap {transaction_id} has unknown swap_type={raw_type!r}") from None

        raw_amount = pick("amount_usd", "amountUSD", "amountUsd")
        try:
            amount_usd = float(raw_amount)
        except (TypeError, ValueError):
            raise InvalidSwapError(f"swap {transaction_id} has invalid amount_usd={raw_amount!r}") from None

        timestamp = _parse_timestamp(pick("timestamp", "time", "block_time", "blockTime"))
        if timestamp is None:
            raise InvalidSwapError(f"swap {transaction_id} has missing or unparsable timestamp")

        price: float | None = None
        raw_price = pick("price")
        if raw_price is not None:
            with contextlib.suppress(TypeError, ValueError):
                price = float(raw_price)

        swap = cls(
            transaction_id=str(transaction_id or ""),
            wallet_address=str(pick("wallet_address", "walletAddress") or ""),
            token_address=str(pick("token_address", "tokenAddress") or ""),
            token_symbol=str(pick("token_symbol", "tokenSymbol") or ""),
            amount_usd=amount_usd,
            timestamp=timestamp,
            swap_type=swap_type,
            price=price,
        )
        return swap.validate()

    def to_dict(self) -> dict[str, object]:
        return {
            "transaction_id": self.transaction_id,
            "wallet_address": self.wallet_address,
            "token_address": self.token_address,
            "token_symbol": self.token_symbol,
            "amount_usd": self.amount_usd,
            "timestamp": self.timestamp.isoformat(),
            "swap_type": self.swap_type.value,
            "price": self.price,
        }
