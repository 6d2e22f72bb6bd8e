from decimal import Decimal

import pytest

from helpora.errors import EscrowError
from helpora.models import PaymentMethod
from helpora.services import escrow_service


@pytest.mark.parametrize('amount,fee,payout', [
    (1000, '100', '900'),
    ('1000.00', '100', '900.00'),
    (5, '1', '4'),
    (4, '0', '4'),
    (15, '2', '13'),
    (25, '3', '22'),
    ('999.99', '100', '899.99'),
])
def test_compute_fee_rounds_half_up(amount, fee, payout):
    assert escrow_service.compute_fee(amount, '0.10') == (
        Decimal(fee), Decimal(payout))


def test_compute_fee_reads_configured_rate(app_ctx):
    app_ctx.config['PLATFORM_FEE_RATE'] = '0.20'
    assert escrow_service.compute_fee(1000) == (
        Decimal('200'), Decimal('800'))


def test_fee_and_payout_sum_to_amount():
    for amount in ('1', '7.50', '123.45', '10000'):
        fee, payout = escrow_service.compute_fee(amount, '0.10')
        assert fee + payout == Decimal(amount)


@pytest.mark.parametrize('value', [None, '', 'abc', 0, -10, 'NaN', 'inf'])
def test_parse_amount_rejects_bad_values(value):
    with pytest.raises(EscrowError) as exc:
        escrow_service.parse_amount(value)
    assert exc.value.message == 'Please enter a valid amount'


def test_parse_amount_quantizes_to_cents():
    assert escrow_service.parse_amount('12.345') == Decimal('12.35')
    assert escrow_service.parse_amount(1000) == Decimal('1000.00')


def test_parse_payment_method():
    assert escrow_service.parse_payment_method(' UPI ') == PaymentMethod.UPI
    with pytest.raises(EscrowError) as exc:
        escrow_service.parse_payment_method('barter')
    assert exc.value.message == 'Invalid payment method'
