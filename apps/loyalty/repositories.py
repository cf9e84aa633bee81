"""Django ORM implementation of the loyalty repositories."""

from django.db.models import Sum  # type: ignore

from apps.loyalty.domain.entities import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionType
from apps.loyalty.domain.repositories import LoyaltyAccountRepository, LoyaltyTransactionRepository
from apps.loyalty.domain.tiers import LoyaltyTier
from apps.loyalty.models import LoyaltyAccount as LoyaltyAccountModel
from apps.loyalty.models import LoyaltyTransaction as LoyaltyTransactionModel
from shared.infrastructure.persistence import conflict_on_integrity_error, lock_queryset_if_possible


def account_to_entity(obj: LoyaltyAccountModel) -> LoyaltyAccount:
    return LoyaltyAccount(
        id=obj.id,
        user_id=obj.user_id,
        current_points=obj.current_points,
        lifetime_points=obj.lifetime_points,
        lifetime_spending=obj.lifetime_spending,
        tier=LoyaltyTier(obj.tier),
        tier_updated_at=obj.tier_updated_at,
        created_at=obj.created_at,
        updated_at=obj.updated_at,
    )


def entry_to_entity(obj: LoyaltyTransactionModel) -> LoyaltyTransaction:
    return LoyaltyTransaction(
        id=obj.entry_id,
        account_id=obj.account_id,
        booking_id=obj.booking_id,
        type=LoyaltyTransactionType(obj.type),
        points=obj.points,
        balance_after=obj.balance_after,
        description=obj.description,
        metadata=obj.metadata,
        created_at=obj.created_at,
        updated_at=obj.created_at,
    )


def _account_fields(account: LoyaltyAccount) -> dict:
    return {
        'user_id': account.user_id,
        'current_points': account.current_points,
        'lifetime_points': account.lifetime_points,
        'lifetime_spending': account.lifetime_spending,
        'tier': account.tier.value,
        'tier_updated_at': account.tier_updated_at,
        'created_at': account.created_at,
        'updated_at': account.updated_at,
    }


class DjangoLoyaltyAccountRepository(LoyaltyAccountRepository):

    def get_by_user(self, user_id, lock=False):
        queryset = LoyaltyAccountModel.objects.filter(user_id=user_id)
        if lock:
            queryset = lock_queryset_if_possible(queryset)
        obj = queryset.first()
        return account_to_entity(obj) if obj else None

    def add(self, account):
        with conflict_on_integrity_error("Loyalty account already exists", user_id=str(account.user_id)):
            LoyaltyAccountModel.objects.create(id=account.id, **_account_fields(account))

    def save(self, account):
        with conflict_on_integrity_error("Insufficient points", user_id=str(account.user_id)):
            LoyaltyAccountModel.objects.filter(pk=account.id).update(**_account_fields(account))

    def list_all(self):
        return [account_to_entity(obj) for obj in LoyaltyAccountModel.objects.order_by('created_at')]


class DjangoLoyaltyTransactionRepository(LoyaltyTransactionRepository):

    def add(self, entry):
        LoyaltyTransactionModel.objects.create(
            entry_id=entry.id,
            account_id=entry.account_id,
            booking_id=entry.booking_id,
            type=entry.type.value,
            points=entry.points,
            balance_after=entry.balance_after,
            description=entry.description,
            metadata=entry.metadata,
            created_at=entry.created_at,
        )

    def list_for_account(self, account_id, offset=0, limit=None):
        queryset = LoyaltyTransactionModel.objects.filter(account_id=account_id).order_by('-created_at', '-id')
        queryset = queryset[offset:offset + limit] if limit is not None else queryset[offset:]
        return [entry_to_entity(obj) for obj in queryset]

    def count_for_account(self, account_id):
        return LoyaltyTransactionModel.objects.filter(account_id=account_id).count()

    def sum_points(self, account_id):
        total = LoyaltyTransactionModel.objects.filter(account_id=account_id).aggregate(total=Sum('points'))
        return total['total'] or 0

    def find_for_booking(self, account_id, booking_id, type_):
        obj = (
            LoyaltyTransactionModel.objects
            .filter(account_id=account_id, booking_id=booking_id, type=type_.value)
            .order_by('-id')
            .first()
        )
        return entry_to_entity(obj) if obj else None
