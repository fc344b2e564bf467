import pytest

from portal.domain.bookings.statuses import (
    SERVICE_CATEGORY_MODULES,
    TERMINAL_STATUSES,
    BookingStatus,
    ModuleId,
    PaymentProvider,
    ServiceCategory,
    module_for_category,
)


@pytest.mark.parametrize("raw", ["pending_payment", "PENDING_PAYMENT", " Pending_Payment "])
def test_parse_accepts_either_case(raw):
    assert BookingStatus.parse(raw) is BookingStatus.PENDING_PAYMENT


@pytest.mark.parametrize("raw", ["PAID", "", None, 3])
def test_parse_rejects_unknown_values(raw):
    with pytest.raises(ValueError):
        BookingStatus.parse(raw)


def test_client_value_is_uppercase_and_stored_value_lowercase():
    assert BookingStatus.IN_PROGRESS.value == "in_progress"
    assert BookingStatus.IN_PROGRESS.client_value == "IN_PROGRESS"


def test_terminal_statuses():
    assert TERMINAL_STATUSES == {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELED,
        BookingStatus.DECLINED,
    }
    assert BookingStatus.CANCELED.is_terminal
    assert not BookingStatus.PAYMENT_FAILED.is_terminal


def test_every_status_has_a_label():
    for status in BookingStatus:
        assert status.label


def test_online_payment_providers():
    assert PaymentProvider.WHOP.requires_online_payment
    assert PaymentProvider.STRIPE.requires_online_payment
    assert not PaymentProvider.MANUAL.requires_online_payment
    assert not PaymentProvider.NONE.requires_online_payment


def test_every_category_maps_to_a_module():
    assert set(SERVICE_CATEGORY_MODULES) == set(ServiceCategory)
    assert module_for_category("artist") is ModuleId.CLIENT_DELIVERY
    assert module_for_category(ServiceCategory.STRATEGY) is ModuleId.MARKETING_AUTOMATION


def test_unknown_category_is_rejected():
    with pytest.raises(ValueError):
        module_for_category("catering")
