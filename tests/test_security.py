import uuid
from datetime import timedelta

from pharmaflow.core.permissions import PermissionChecker, has_permission
from pharmaflow.core.security import create_access_token, verify_access_token
from tests.conftest import make_session


def test_access_token_carries_permissions():
    user_id = uuid.uuid4()
    token = create_access_token(
        user_id,
        permissions=["purchase_orders:view", "purchase_orders:view", "quality_control:update"],
        additional_claims={"name": "Priya"},
    )

    payload = verify_access_token(token)
    assert payload["sub"] == str(user_id)
    assert payload["permissions"] == ["purchase_orders:view", "quality_control:update"]
    assert payload["name"] == "Priya"


def test_expired_or_garbage_tokens_are_rejected():
    expired = create_access_token(uuid.uuid4(), expires_delta=timedelta(minutes=-5))

    assert verify_access_token(expired) is None
    assert verify_access_token("not-a-token") is None


def test_non_access_tokens_are_rejected():
    token = create_access_token(uuid.uuid4(), additional_claims={"type": "refresh"})
    assert verify_access_token(token) is None


def test_resource_wildcard_and_super_admin():
    session = make_session(permissions=["purchase_orders:*", "quality_control:update"])

    assert has_permission(session, "purchase_orders", "approve_level1")
    assert has_permission(session, "quality_control", "update")
    assert not has_permission(session, "quality_control", "approve")
    assert has_permission(make_session(permissions=[], is_super_admin=True), "quality_control", "approve")


def test_permission_checker():
    checker = PermissionChecker(make_session(permissions=["invoice_receiving:create"]))

    assert checker.has_permission("invoice_receiving:create")
    assert checker.has_any_permission(["invoice_receiving:create", "quality_control:approve"])
    assert not checker.has_all_permissions(["invoice_receiving:create", "quality_control:approve"])
