"""FastAPI dependencies resolving the services assembled in create_app()."""
from fastapi import Request

from app.services.document_store import DocumentStore
from app.services.stripe_gateway import StripeGateway
from app.services.subscription_reconciler import SubscriptionReconciler
from app.services.usage_ledger import UsageLedger


def get_usage_ledger(request: Request) -> UsageLedger:
    return request.app.state.usage_ledger


def get_reconciler(request: Request) -> SubscriptionReconciler:
    return request.app.state.reconciler


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store


def get_gateway(request: Request) -> StripeGateway:
    return request.app.state.gateway
