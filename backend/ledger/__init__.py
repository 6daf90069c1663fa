"""Ledger gateway contract and failure classification."""

from .errors import FailureKind, LedgerError, classify_failure
from .gateway import GatewayFactory, LedgerGateway, build_gateway, load_gateway_factory

__all__ = [
    "FailureKind",
    "GatewayFactory",
    "LedgerError",
    "LedgerGateway",
    "build_gateway",
    "classify_failure",
    "load_gateway_factory",
]
