import pytest
from django.contrib.auth import get_user_model

from tenants.models import Tenant, TenantMembership

User = get_user_model()


@pytest.mark.django_db
def test_tenant_slug_defaults_from_name():
    owner = User.objects.create_user(username="dona", password="pass1234")

    tenant = Tenant.objects.create(name="Padaria São João", owner=owner)

    assert tenant.slug == "padaria-sao-joao"


@pytest.mark.django_db
def test_get_membership_ignores_inactive_and_anonymous():
    from django.contrib.auth.models import AnonymousUser

    owner = User.objects.create_user(username="dona", password="pass1234")
    staff = User.objects.create_user(username="caixa", password="pass1234")
    tenant = Tenant.objects.create(name="Padaria", owner=owner)
    membership = TenantMembership.objects.create(tenant=tenant, user=staff, role=TenantMembership.ROLE_ADMIN)

    assert tenant.get_membership(staff) == membership
    assert membership.is_elevated is True
    assert tenant.get_membership(AnonymousUser()) is None

    membership.is_active = False
    membership.save(update_fields=["is_active"])

    assert tenant.get_membership(staff) is None
    assert membership.is_elevated is False


@pytest.mark.django_db
def test_seller_role_is_not_elevated():
    owner = User.objects.create_user(username="dona", password="pass1234")
    seller = User.objects.create_user(username="vendedor", password="pass1234")
    tenant = Tenant.objects.create(name="Padaria", owner=owner)

    membership = TenantMembership.objects.create(tenant=tenant, user=seller, role=TenantMembership.ROLE_SELLER)

    assert membership.is_elevated is False
