"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from credit_ledger.infrastructure.clients.gateway import PaymentGatewayClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_gateway_client() -> PaymentGatewayClient:
    """Provide payment gateway client instance"""
    return PaymentGatewayClient()
