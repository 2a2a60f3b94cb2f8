import logging

import pytest

from scholarz_billing.core.errors import ExternalServiceError
from scholarz_billing.schemas.billing import Customer
from scholarz_billing.services.subscriptions import (
    build_application_context,
    build_subscriber,
    create_subscription,
    normalize_email,
)

SUBSCRIPTIONS = "/v1/billing/subscriptions"


@pytest.mark.parametrize(
    "raw,expected",
    [
        (" Thandi.Mokoena@Example.CO.ZA ", "thandi.mokoena@example.co.za"),
        ("thandi @ example.com", "thandi@example.com"),
        ("not-an-email", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_email(raw, expected):
    assert normalize_email(raw) == expected


def test_subscriber_name_needs_two_tokens():
    single = build_subscriber(Customer(name="Thandi", email="thandi@example.com"))
    assert single == {"email_address": "thandi@example.com"}

    full = build_subscriber(Customer(name="  Thandi  van der Merwe ", email="thandi@example.com"))
    assert full["name"] == {"given_name": "Thandi", "surname": "van der Merwe"}


def test_subscriber_omitted_without_valid_email():
    assert build_subscriber(Customer(name="Thandi Mokoena", email="thandi@")) is None
    assert build_subscriber(None) is None


def test_application_context_skips_shipping_and_subscribes_now():
    ctx = build_application_context("Scholarz", "https://r", "https://c")
    assert ctx["user_action"] == "SUBSCRIBE_NOW"
    assert ctx["shipping_preference"] == "NO_SHIPPING"
    assert ctx["brand_name"] == "Scholarz"
    assert (ctx["return_url"], ctx["cancel_url"]) == ("https://r", "https://c")


async def test_create_subscription_returns_approval_url(paypal, fake_paypal):
    created = await create_subscription(
        paypal,
        "P-42",
        brand="Scholarz",
        return_url="https://scholarz.co.za/ok",
        cancel_url="https://scholarz.co.za/no",
        customer=Customer(name="Thandi Mokoena", email="Thandi@Example.com"),
        custom_id="user-1",
    )
    assert created.status == "APPROVAL_PENDING"
    assert created.plan_id == "P-42"
    assert created.approval_url.startswith("https://www.sandbox.paypal.com/")

    (body,) = fake_paypal.calls("POST", SUBSCRIPTIONS)
    assert body["plan_id"] == "P-42"
    assert body["custom_id"] == "user-1"
    assert body["subscriber"]["email_address"] == "thandi@example.com"


async def test_missing_approve_link_is_logged(paypal, fake_paypal, caplog):
    fake_paypal.queue("POST", SUBSCRIPTIONS, 201, {"id": "I-NOLINK", "status": "APPROVAL_PENDING", "links": []})
    with caplog.at_level(logging.WARNING, logger="scholarz_billing.services.subscriptions"):
        created = await create_subscription(paypal, "P-1", brand="Scholarz", return_url="r", cancel_url="c")
    assert created.approval_url is None
    assert "I-NOLINK" in caplog.text


async def test_rejected_subscription_surfaces_detail(paypal, fake_paypal):
    fake_paypal.queue(
        "POST",
        SUBSCRIPTIONS,
        422,
        {
            "name": "UNPROCESSABLE_ENTITY",
            "message": "The requested action could not be performed.",
            "details": [{"issue": "PLAN_STATUS_INVALID", "description": "Invalid plan status. Plan should be ACTIVE."}],
        },
    )
    with pytest.raises(ExternalServiceError) as excinfo:
        await create_subscription(paypal, "P-1", brand="Scholarz", return_url="r", cancel_url="c")
    assert excinfo.value.message == "Invalid plan status. Plan should be ACTIVE."
    assert excinfo.value.status == 422
