"""
Hypothesis Property-Based Tests for commission logic.

Tests commission arithmetic, partner balance invariants across operation
sequences, and lead parsing.
"""

import csv
import io
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from app.config import Settings
from app.db.models import CommissionLog, Partner, PayoutRequest
from app.exceptions import (
    DataIntegrityError,
    InsufficientBalanceError,
    InvalidTransitionError,
    PayoutBelowMinimumError,
)
from app.models.api import CommissionStatus, PartnerType, PayoutStatus
from app.models.domain import ProofOfWork
from app.services.commission import (
    REFERRAL_CODE_LENGTH,
    REFERRAL_CODE_PREFIX,
    CommissionService,
    commission_amount,
    commission_rate_bps,
    generate_referral_code,
    parse_lead_csv,
    verify_partner_balances,
)

# ============================================================================
# Hypothesis Strategies
# ============================================================================

sale_amounts = st.integers(min_value=0, max_value=1_000_000_000)
rates = st.integers(min_value=0, max_value=10_000)
balances = st.integers(min_value=0, max_value=10_000_000)
partner_types = st.sampled_from(list(PartnerType))
lead_names = st.text(
    alphabet=st.characters(whitelist_categories=("L", "N"), whitelist_characters=" .-&"),
    min_size=1,
    max_size=40,
).filter(lambda x: x.strip())


def _partner(wallet: int, locked: int, total: int) -> MagicMock:
    partner = MagicMock(spec=Partner)
    partner.id = uuid4()
    partner.wallet_balance_minor = wallet
    partner.locked_balance_minor = locked
    partner.total_earned_minor = total
    return partner


class TestCommissionAmountProperties:
    """Properties of commission arithmetic."""

    @given(sale=sale_amounts, rate=rates)
    def test_never_exceeds_sale(self, sale: int, rate: int) -> None:
        """Commission is between zero and the sale amount."""
        assert 0 <= commission_amount(sale, rate) <= sale

    @given(sale=sale_amounts, rate=rates)
    def test_half_up_rounding(self, sale: int, rate: int) -> None:
        """Commission is within half a minor unit of the exact amount."""
        exact = sale * rate / 10_000
        assert abs(commission_amount(sale, rate) - exact) <= 0.5

    @given(sale=sale_amounts, low=rates, high=rates)
    def test_monotonic_in_rate(self, sale: int, low: int, high: int) -> None:
        """A higher rate never pays less."""
        low, high = sorted((low, high))
        assert commission_amount(sale, low) <= commission_amount(sale, high)

    @given(sale=st.integers(max_value=-1), rate=rates)
    def test_negative_sale_rejected(self, sale: int, rate: int) -> None:
        """Negative sales are invalid."""
        with pytest.raises(ValueError):
            commission_amount(sale, rate)

    @given(sale=sale_amounts)
    def test_channel_earns_at_least_referral(self, sale: int) -> None:
        """Channel partners never earn less than referral partners."""
        settings = Settings()
        channel = commission_amount(sale, commission_rate_bps(PartnerType.CHANNEL, settings))
        referral = commission_amount(sale, commission_rate_bps(PartnerType.REFERRAL, settings))
        assert channel >= referral


class TestPartnerBalanceProperties:
    """Properties of the partner balance invariant."""

    @given(wallet=balances, locked=balances, extra=balances)
    def test_balances_within_earnings_pass(self, wallet: int, locked: int, extra: int) -> None:
        """Balances covered by lifetime earnings are valid."""
        verify_partner_balances(_partner(wallet, locked, wallet + locked + extra))

    @given(wallet=balances, locked=balances, shortfall=st.integers(min_value=1, max_value=1000))
    def test_balances_above_earnings_fail(
        self, wallet: int, locked: int, shortfall: int
    ) -> None:
        """Balances above lifetime earnings are an integrity error."""
        with pytest.raises(DataIntegrityError):
            verify_partner_balances(_partner(wallet, locked, wallet + locked - shortfall))

    @given(wallet=st.integers(max_value=-1), locked=balances)
    def test_negative_wallet_fails(self, wallet: int, locked: int) -> None:
        """Negative wallets are an integrity error."""
        with pytest.raises(DataIntegrityError):
            verify_partner_balances(_partner(wallet, locked, locked + 10_000_000))


class TestReferralCodeProperties:
    """Properties of generated referral codes."""

    @given(st.integers(min_value=0, max_value=50))
    def test_code_shape(self, _: int) -> None:
        """Codes are the prefix plus lowercase alphanumerics."""
        code = generate_referral_code()
        suffix = code.removeprefix(REFERRAL_CODE_PREFIX)
        assert code.startswith(REFERRAL_CODE_PREFIX)
        assert len(suffix) == REFERRAL_CODE_LENGTH
        assert all(c.islower() or c.isdigit() for c in suffix)


class TestLeadCsvProperties:
    """Properties of lead CSV parsing."""

    @given(names=st.lists(lead_names, min_size=1, max_size=20), blanks=st.integers(0, 5))
    def test_every_named_row_parsed(self, names: list[str], blanks: int) -> None:
        """Named rows become leads; nameless rows are counted as skipped."""
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["Name", "Email"])
        for name in names:
            writer.writerow([name, "lead@example.com"])
        for _ in range(blanks):
            writer.writerow(["", "orphan@example.com"])

        leads, skipped = parse_lead_csv(buffer.getvalue())

        assert [lead.name for lead in leads] == [name.strip() for name in names]
        assert skipped == blanks


# ============================================================================
# Commission Service - Operation Sequences
# ============================================================================

OPEN_STATUSES = {
    CommissionStatus.LOCKED.value,
    CommissionStatus.UNDER_REVIEW.value,
    CommissionStatus.CHANGES_REQUESTED.value,
}
EARNED_STATUSES = {CommissionStatus.PAYABLE.value, CommissionStatus.PAID.value}
REFUSALS = (InvalidTransitionError, InsufficientBalanceError, PayoutBelowMinimumError)

operations = st.lists(
    st.one_of(
        st.tuples(st.just("earn"), st.integers(min_value=0, max_value=5_000_000)),
        st.tuples(
            st.sampled_from(["submit", "approve", "reject", "void"]),
            st.integers(min_value=0, max_value=20),
        ),
        st.tuples(st.just("payout"), st.integers(min_value=0, max_value=2_000_000)),
        st.tuples(st.sampled_from(["process", "refuse"]), st.integers(min_value=0, max_value=20)),
    ),
    max_size=30,
)


class _PartnerBook:
    """One partner with its commission and payout rows, served to patched lock helpers."""

    def __init__(self) -> None:
        self.partner = _partner(0, 0, 0)
        self.partner.type = PartnerType.REFERRAL.value
        self.partner.code = "RAHUL20"
        self.partner.signups = 0
        self.rows: dict = {}

    def add(self, row) -> None:
        self.rows[row.id] = row

    def of(self, model) -> list:
        return [row for row in self.rows.values() if isinstance(row, model)]

    def balances(self) -> tuple[int, int, int]:
        p = self.partner
        return p.wallet_balance_minor, p.locked_balance_minor, p.total_earned_minor

    async def lock_commission(self, commission_id):
        return self.rows[commission_id]

    async def lock_pending_payout(self, payout_id, action: str):
        payout = self.rows[payout_id]
        if payout.status != PayoutStatus.PENDING.value:
            raise InvalidTransitionError("payout", payout.status, action)
        return payout

    async def payable_commissions(self, partner_id):
        return [
            log
            for log in self.of(CommissionLog)
            if log.status == CommissionStatus.PAYABLE.value
        ]


async def _apply(service: CommissionService, book: _PartnerBook, op: str, arg: int) -> None:
    partner_id = book.partner.id
    logs = book.of(CommissionLog)
    payouts = book.of(PayoutRequest)

    if op == "earn":
        await service.apply_commission("RAHUL20", arg, "Kiran Stores", "Pro")
    elif op == "payout":
        await service.request_partner_payout(partner_id, arg)
    elif op in ("submit", "approve", "reject", "void") and logs:
        log = logs[arg % len(logs)]
        if op == "submit":
            await service.submit_partner_work(partner_id, log.id, ProofOfWork("Onboarded"))
        elif op == "approve":
            await service.approve_partner_work(log.id)
        elif op == "reject":
            await service.reject_partner_work(log.id, "Add the call recording")
        else:
            await service.void_commission(log.id, "Customer refunded")
    elif op in ("process", "refuse") and payouts:
        payout = payouts[arg % len(payouts)]
        if op == "process":
            await service.process_payout(payout.id)
        else:
            await service.reject_payout(payout.id, "Bank details missing")


class TestPartnerOperationSequences:
    """Partner balances stay consistent across any sequence of operations."""

    @given(ops=operations)
    @settings(max_examples=50, deadline=None)
    @pytest.mark.asyncio
    async def test_balances_match_commission_rows(self, ops: list[tuple[str, int]]) -> None:
        """Locked, wallet and earned balances always agree with the rows behind them."""
        book = _PartnerBook()
        session = AsyncMock()
        session.add = MagicMock(side_effect=book.add)
        service = CommissionService(session, Settings())

        with (
            patch.object(service, "_lock_partner_by_code", AsyncMock(return_value=book.partner)),
            patch.object(service, "_lock_partner", AsyncMock(return_value=book.partner)),
            patch.object(service, "_lock_commission", side_effect=book.lock_commission),
            patch.object(service, "_lock_pending_payout", side_effect=book.lock_pending_payout),
            patch.object(service, "_payable_commissions", side_effect=book.payable_commissions),
        ):
            for op, arg in ops:
                before = book.balances()
                try:
                    await _apply(service, book, op, arg)
                except REFUSALS:
                    assert book.balances() == before

                logs = book.of(CommissionLog)
                live_payouts = [
                    p for p in book.of(PayoutRequest) if p.status != PayoutStatus.REJECTED.value
                ]
                wallet, locked, earned = book.balances()

                verify_partner_balances(book.partner)
                assert earned == sum(log.amount_minor for log in logs)
                assert locked == sum(
                    log.amount_minor for log in logs if log.status in OPEN_STATUSES
                )
                assert wallet == sum(
                    log.amount_minor for log in logs if log.status in EARNED_STATUSES
                ) - sum(p.amount_minor for p in live_payouts)
