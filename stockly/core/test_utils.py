"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from django.utils.text import slugify
from rest_framework.test import APIClient
from stockly.core.authentication import get_active_membership_company_id, issue_session_tokens
from stockly.core.models import Company, Membership
from stockly.catalog.models import Product, ProductVariant
from stockly.inventory.models import Receiving, ReceivingItem, StockMovement, StockOpname, StockOpnameItem
from stockly.inventory.stock import get_stock_balances
from decimal import Decimal
import random
import string
import uuid

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, password='testpass123', system_role=User.SYSTEM_ROLE_STAFF, is_active=True):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        return User.objects.create_user(
            username=username,
            email=f'{username}@test.com',
            password=password,
            system_role=system_role,
            is_active=is_active,
        )

    @staticmethod
    def create_superadmin(username=None, password='testpass123'):
        return TestDataFactory.create_user(username, password, system_role=User.SYSTEM_ROLE_SUPERADMIN)

    @staticmethod
    def create_company(name=None, slug=None):
        """Create a test company"""
        if not name:
            name = f'Company {TestDataFactory.random_string(6)}'
        return Company.objects.create(name=name, slug=slug or slugify(name))

    @staticmethod
    def create_membership(user, company, role=Membership.ROLE_ADMIN, status=Membership.STATUS_ACTIVE):
        """Link a user to a company"""
        return Membership.objects.create(user=user, company=company, role=role, status=status)

    @staticmethod
    def create_member(company, system_role=User.SYSTEM_ROLE_ADMIN, role=Membership.ROLE_ADMIN, username=None):
        """Create a user with an active membership in `company`"""
        user = TestDataFactory.create_user(username=username, system_role=system_role)
        TestDataFactory.create_membership(user, company, role=role)
        return user

    @staticmethod
    def create_product(company, name=None, status=Product.STATUS_ACTIVE, sku=None, barcode=None,
                       selling_price=None):
        """Create a test product with its default variant"""
        if not name:
            name = f'Product_{TestDataFactory.random_string(6)}'
        product = Product.objects.create(company=company, name=name, status=status)
        TestDataFactory.create_variant(
            product, name='Default', sku=sku, barcode=barcode, selling_price=selling_price, is_default=True,
        )
        return product

    @staticmethod
    def create_variant(product, name=None, sku=None, barcode=None, selling_price=None, is_default=False):
        """Create a test variant"""
        return ProductVariant.objects.create(
            company_id=product.company_id,
            product=product,
            name=name or f'Variant_{TestDataFactory.random_string(4)}',
            sku=sku,
            barcode=barcode,
            selling_price=selling_price if selling_price is not None else Decimal('10000.00'),
            is_default=is_default,
        )

    @staticmethod
    def default_variant(product):
        return product.variants.get(is_default=True)

    @staticmethod
    def create_movement(variant, user, qty, movement_type=StockMovement.TYPE_IN,
                        reference_type=StockMovement.REFERENCE_RECEIVING, reference_id=None):
        """Append a ledger movement directly"""
        return StockMovement.objects.create(
            company_id=variant.company_id,
            variant=variant,
            type=movement_type,
            qty=Decimal(qty),
            reference_type=reference_type,
            reference_id=reference_id or uuid.uuid4(),
            created_by=user,
        )

    @staticmethod
    def create_receiving(company, user, items, status=Receiving.STATUS_DRAFT):
        """
        Create a receiving from `[(variant, qty), ...]` without touching the ledger
        """
        receiving = Receiving.objects.create(company=company, status=status, created_by=user)
        for variant, qty in items:
            ReceivingItem.objects.create(
                company=company, receiving=receiving, variant=variant, qty=Decimal(qty),
            )
        return receiving

    @staticmethod
    def create_opname(company, user, variants=None):
        """Create an IN_PROGRESS opname snapshotting `variants` at their current balance"""
        opname = StockOpname.objects.create(company=company, started_by=user)
        variants = variants or []
        balances = get_stock_balances(company.id, [v.id for v in variants])
        for variant in variants:
            qty = balances[str(variant.id)]
            StockOpnameItem.objects.create(
                company=company, opname=opname, variant=variant,
                system_qty=qty, counted_qty=qty, diff_qty=Decimal('0'),
            )
        return opname


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user, company=None):
        """
        Authenticate the client with a session for `user`.

        The session is scoped to `company` when given (impersonation for a
        superadmin), otherwise to the user's active membership.
        """
        if company is not None:
            company_id = company.id
        elif user.is_superadmin:
            company_id = None
        else:
            company_id = get_active_membership_company_id(user)
        tokens = issue_session_tokens(user, company_id)
        self.credentials(HTTP_AUTHORIZATION=f"Bearer {tokens['access']}")
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
