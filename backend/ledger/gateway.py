"""Contract the settlement engine expects from the host's ledger client."""

from __future__ import annotations

from importlib import import_module
from typing import Any, Callable, Protocol, runtime_checkable

from app.domain import FinalizeReceipt, MarketSnapshot


@runtime_checkable
class LedgerGateway(Protocol):
    """Read/write access to the market ledger.

    Implementations own transport, signing and retries on the wire. Every
    method may raise; the engine classifies failures through
    :func:`ledger.errors.classify_failure` using the exception message, so
    implementations should preserve the ledger's revert reason in ``str(exc)``.
    """

    def market_count(self) -> int: ...

    def get_market(self, market_id: int) -> MarketSnapshot: ...

    def estimate_finalize_cost(self, market_id: int) -> int: ...

    def submit_finalize(self, market_id: int, *, cost_limit: int) -> str:
        """Broadcast the finalize action and return its transaction id."""
        ...

    def wait_for_confirmation(self, tx_id: str, *, timeout: float) -> FinalizeReceipt: ...


GatewayFactory = Callable[[], LedgerGateway]


def load_gateway_factory(path: str) -> GatewayFactory:
    """Resolve a ``package.module:callable`` path to a gateway factory."""

    module_name, _, attribute = path.partition(":")
    module = import_module(module_name)
    try:
        factory: Any = getattr(module, attribute)
    except AttributeError as exc:
        raise ImportError(f"{module_name} has no attribute {attribute!r}") from exc
    if not callable(factory):
        raise TypeError(f"Ledger gateway factory {path} is not callable")
    return factory


def build_gateway(path: str) -> LedgerGateway:
    gateway = load_gateway_factory(path)()
    if not isinstance(gateway, LedgerGateway):
        raise TypeError(f"{path} returned {type(gateway).__name__}, which is not a LedgerGateway")
    return gateway
