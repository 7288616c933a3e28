"""
Tests for balance operations.

Tests cover:
- Price table lookup
- Grant: additive stacking, premium flags, subscription-only products
- Revoke: total reset
- Transfer: combined balances, source marker, missing source
- Consume: decrement and tagged failures
- First sign-in creation
"""

import logging

import pytest
from unittest.mock import patch

from rockid.models.entitlement import TRANSFERRED_AWAY
from rockid.services.balance import (
    consume_token,
    ensure_entitlement,
    grant_tokens,
    revoke_tokens,
    transfer_subscription,
)
from rockid.services.errors import ErrorKind, EntitlementError, OUT_OF_TOKENS_MESSAGE
from rockid.services.price_plans import tokens_for_product


class TestPricePlans:
    """Tests for product -> token lookup."""

    def test_weekly_plan(self):
        assert tokens_for_product("rockid_weekly_399") == 200

    def test_annual_plan(self):
        assert tokens_for_product("rockid_annual_4999") == 4000

    def test_unknown_product_grants_zero(self):
        assert tokens_for_product("rockid_lifetime") == 0

    def test_missing_product_grants_zero(self):
        assert tokens_for_product(None) == 0

    def test_custom_table(self):
        assert tokens_for_product("promo", table={"promo": 25}) == 25


class TestGrant:
    """Tests for grant_tokens."""

    def test_weekly_grant_adds_200(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=1)

        granted = grant_tokens(store, "uid_1", "rockid_weekly_399", "INITIAL_PURCHASE")

        entitlement = fetch("uid_1")
        assert granted == 200
        assert entitlement.tokens == 201
        assert entitlement.is_premium is True
        assert entitlement.subscription_active is True
        assert entitlement.subscription_product_id == "rockid_weekly_399"
        assert entitlement.last_subscription_event == "INITIAL_PURCHASE"
        assert entitlement.last_grant_at is not None

    def test_renewals_stack(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=0)

        grant_tokens(store, "uid_1", "rockid_weekly_399", "INITIAL_PURCHASE")
        grant_tokens(store, "uid_1", "rockid_weekly_399", "RENEWAL")

        entitlement = fetch("uid_1")
        assert entitlement.tokens == 400
        assert entitlement.last_subscription_event == "RENEWAL"

    def test_grant_creates_missing_record(self, store, fetch):
        grant_tokens(store, "uid_new", "rockid_annual_4999", "INITIAL_PURCHASE")

        entitlement = fetch("uid_new")
        assert entitlement.tokens == 4000
        assert entitlement.is_premium is True

    def test_unknown_product_initial_purchase_still_premium(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=3)

        granted = grant_tokens(store, "uid_1", "rockid_subscription_only", "INITIAL_PURCHASE")

        entitlement = fetch("uid_1")
        assert granted == 0
        assert entitlement.tokens == 3
        assert entitlement.is_premium is True
        assert entitlement.subscription_active is True
        assert entitlement.subscription_product_id == "rockid_subscription_only"

    def test_unknown_product_renewal_keeps_subscription_active(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=3)

        grant_tokens(store, "uid_1", "rockid_subscription_only", "RENEWAL")

        entitlement = fetch("uid_1")
        assert entitlement.tokens == 3
        assert entitlement.is_premium is True
        assert entitlement.last_subscription_event == "RENEWAL"

    def test_grant_uses_configured_table(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=0)

        with patch("rockid.services.price_plans.settings") as mock_settings:
            mock_settings.PRODUCT_TOKENS = {"rockid_monthly_999": 800}
            grant_tokens(store, "uid_1", "rockid_monthly_999", "INITIAL_PURCHASE")

        assert fetch("uid_1").tokens == 800


class TestRevoke:
    """Tests for revoke_tokens."""

    def test_revoke_zeroes_everything(self, store, make_entitlement, fetch):
        make_entitlement(
            "uid_1",
            tokens=3750,
            is_premium=True,
            subscription_active=True,
            subscription_product_id="rockid_annual_4999",
        )

        revoke_tokens(store, "uid_1", "CANCELLATION")

        entitlement = fetch("uid_1")
        assert entitlement.tokens == 0
        assert entitlement.is_premium is False
        assert entitlement.subscription_active is False
        assert entitlement.last_subscription_event == "CANCELLATION"
        assert entitlement.last_cancellation_at is not None

    def test_revoke_zero_balance_stays_zero(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=0)

        revoke_tokens(store, "uid_1", "EXPIRATION")

        assert fetch("uid_1").tokens == 0

    def test_revoke_missing_user_creates_inactive_record(self, store, fetch):
        revoke_tokens(store, "uid_new", "EXPIRATION")

        entitlement = fetch("uid_new")
        assert entitlement.tokens == 0
        assert entitlement.is_premium is False


class TestTransfer:
    """Tests for transfer_subscription."""

    def test_transfer_combines_balances(self, store, make_entitlement, fetch):
        make_entitlement(
            "anon_1",
            tokens=150,
            is_premium=True,
            subscription_active=True,
            subscription_product_id="rockid_weekly_399",
        )
        make_entitlement("uid_real", tokens=1)

        assert transfer_subscription(store, "anon_1", "uid_real", "TRANSFER") is True

        destination = fetch("uid_real")
        assert destination.tokens == 151
        assert destination.is_premium is True
        assert destination.subscription_active is True
        assert destination.subscription_product_id == "rockid_weekly_399"
        assert destination.last_subscription_event == "TRANSFER"
        assert destination.last_grant_at is not None

        source = fetch("anon_1")
        assert source.tokens == 0
        assert source.is_premium is False
        assert source.subscription_active is False
        assert source.last_subscription_event == TRANSFERRED_AWAY
        assert source.transferred_to == "uid_real"
        assert source.last_cancellation_at is not None

    def test_transfer_creates_destination(self, store, make_entitlement, fetch):
        make_entitlement("anon_1", tokens=200, is_premium=True, subscription_active=True)

        transfer_subscription(store, "anon_1", "uid_new", "TRANSFER")

        destination = fetch("uid_new")
        assert destination.tokens == 200
        assert destination.is_premium is True

    def test_missing_source_is_noop(self, store, make_entitlement, fetch):
        make_entitlement("uid_real", tokens=5)

        assert transfer_subscription(store, "anon_missing", "uid_real", "TRANSFER") is False

        assert fetch("uid_real").tokens == 5
        assert fetch("uid_real").version == 1
        assert fetch("anon_missing") is None

    def test_transfer_marker_follows_latest_destination(self, store, make_entitlement, fetch):
        make_entitlement("anon_1", tokens=10, is_premium=True, subscription_active=True)

        transfer_subscription(store, "anon_1", "uid_a", "TRANSFER")
        transfer_subscription(store, "anon_1", "uid_b", "TRANSFER")

        assert fetch("anon_1").transferred_to == "uid_b"
        assert fetch("anon_1").last_subscription_event == TRANSFERRED_AWAY
        assert fetch("uid_a").tokens == 10
        assert fetch("uid_b").tokens == 0

    def test_same_user_rejected(self, store, make_entitlement):
        make_entitlement("uid_1", tokens=10)

        with pytest.raises(ValueError):
            transfer_subscription(store, "uid_1", "uid_1", "TRANSFER")


class TestConsume:
    """Tests for consume_token."""

    def test_consume_returns_new_balance(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=3)

        assert consume_token(store, "uid_1") == 2
        assert fetch("uid_1").tokens == 2

    def test_premium_users_are_not_exempt(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=200, is_premium=True, subscription_active=True)

        assert consume_token(store, "uid_1") == 199

    def test_zero_balance_fails_with_precondition(self, store, make_entitlement, fetch):
        make_entitlement("uid_1", tokens=0, is_premium=True)

        with pytest.raises(EntitlementError) as exc_info:
            consume_token(store, "uid_1")

        assert exc_info.value.kind is ErrorKind.FAILED_PRECONDITION
        assert exc_info.value.message == OUT_OF_TOKENS_MESSAGE
        assert fetch("uid_1").tokens == 0

    def test_missing_user_fails_not_found(self, store):
        with pytest.raises(EntitlementError) as exc_info:
            consume_token(store, "uid_missing")

        assert exc_info.value.kind is ErrorKind.NOT_FOUND

    def test_denials_are_logged_with_user(self, store, make_entitlement, caplog):
        make_entitlement("uid_empty", tokens=0)
        caplog.set_level(logging.INFO, logger="rockid.services.balance")

        for user_id in ("uid_missing", "uid_empty"):
            with pytest.raises(EntitlementError):
                consume_token(store, user_id)

        denials = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert [r.user_id for r in denials] == ["uid_missing", "uid_empty"]


class TestEnsureEntitlement:
    """Tests for first sign-in creation."""

    def test_new_user_gets_starting_grant(self, store):
        entitlement = ensure_entitlement(store, "uid_new")

        assert entitlement.tokens == 1
        assert entitlement.is_premium is False

    def test_existing_user_untouched(self, store, make_entitlement):
        make_entitlement("uid_1", tokens=0, is_premium=True)

        entitlement = ensure_entitlement(store, "uid_1")

        assert entitlement.tokens == 0
        assert entitlement.is_premium is True


class TestMutationLogging:
    """Mutations log the billing event that caused them."""

    def test_grant_logs_event_context(self, store, make_entitlement, caplog):
        make_entitlement("uid_1", tokens=0)
        caplog.set_level(logging.INFO, logger="rockid.services.balance")

        grant_tokens(store, "uid_1", "rockid_weekly_399", "RENEWAL", event_id="evt_42")

        granted = [r for r in caplog.records if r.getMessage() == "Granted tokens"]
        assert len(granted) == 1
        assert granted[0].user_id == "uid_1"
        assert granted[0].event_id == "evt_42"
        assert granted[0].event_type == "RENEWAL"

    def test_revoke_logs_event_context(self, store, make_entitlement, caplog):
        make_entitlement("uid_1", tokens=5)
        caplog.set_level(logging.INFO, logger="rockid.services.balance")

        revoke_tokens(store, "uid_1", "EXPIRATION", event_id="evt_43")

        record = next(r for r in caplog.records if r.getMessage().startswith("Subscription inactive"))
        assert (record.user_id, record.event_id, record.event_type) == ("uid_1", "evt_43", "EXPIRATION")

    def test_transfer_logs_event_context(self, store, make_entitlement, caplog):
        make_entitlement("anon_1", tokens=5, is_premium=True)
        caplog.set_level(logging.INFO, logger="rockid.services.balance")

        transfer_subscription(store, "anon_1", "uid_real", "TRANSFER", event_id="evt_44")

        record = next(r for r in caplog.records if r.getMessage() == "Transferred subscription")
        assert record.from_user_id == "anon_1"
        assert record.to_user_id == "uid_real"
        assert record.event_id == "evt_44"
