"""Lookups and counters on the collaborator entities the engine depends on.

Users, providers and services are owned elsewhere; the engine only reads them
and bumps the two cumulative money counters inside its own transactions.
"""
from decimal import Decimal
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from marketplace.core.errors import ProviderUnavailableError, ServiceNotFoundError
from marketplace.models.provider import Provider, PROVIDER_APPROVED
from marketplace.models.service import Service
from marketplace.models.user import User


def get_provider(db: Session, provider_id: str, lock: bool = False) -> Provider:
    stmt = select(Provider).where(Provider.id == provider_id)
    if lock:
        stmt = stmt.with_for_update()
    provider = db.execute(stmt.execution_options(populate_existing=True)).scalar_one_or_none()
    if provider is None:
        raise ProviderUnavailableError("Provider not found or not approved")
    return provider


def get_bookable_provider(db: Session, provider_id: str, lock: bool = False) -> Provider:
    provider = get_provider(db, provider_id, lock=lock)
    if provider.status != PROVIDER_APPROVED:
        raise ProviderUnavailableError("Provider not found or not approved")
    owner = db.get(User, provider.user_id)
    if owner is None or not owner.is_active:
        raise ProviderUnavailableError("This provider is currently unavailable, please choose another provider")
    return provider


def get_service(db: Session, service_id: str, provider_id: str) -> Service:
    service = db.get(Service, service_id)
    if service is None or service.provider_id != provider_id or not service.is_active:
        raise ServiceNotFoundError("Service not found")
    return service


def increment_provider_revenue(db: Session, provider_id: str, amount: Decimal) -> Decimal:
    db.execute(
        update(Provider)
        .where(Provider.id == provider_id)
        .values(total_revenue=Provider.total_revenue + amount)
    )
    return db.execute(select(Provider.total_revenue).where(Provider.id == provider_id)).scalar_one()


def increment_customer_spend(db: Session, user_id: str, amount: Decimal) -> Decimal:
    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(total_spending=User.total_spending + amount)
    )
    return db.execute(select(User.total_spending).where(User.id == user_id)).scalar_one()
