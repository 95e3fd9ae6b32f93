"""
Payment Processor - Main Orchestrator

Coordinates the payment reconciliation pipeline through discrete, testable
steps inside one database transaction.
"""

import dataclasses
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict

from .calculators import (
    ChargeCalculator,
    CommissionCalculator,
    CreditStore,
    InvoiceAllocator,
    OverpaymentDistributor
)
from .db import LedgerRepository
from .errors import ConflictError, LedgerError, NoInvoiceToAllocate
from .models import (
    OutstandingInvoice, PaymentContext, PaymentRequest, PaymentResult, PaymentStatus, TenantTerms,
    to_decimal
)
from .output import OutputBuilder
from .periods import parse_period, period_key, policy_period_start
from .validators import InputValidator


logger = logging.getLogger(__name__)

RECEIPT_PENDING = "payment recorded, receipt pending"


class PaymentProcessor:
    """
    Main orchestrator for payment processing.

    Implements a clear pipeline pattern:
    1. Validate Input
    2. Lock Tenant, Load Terms and Credit
    3. Resolve Invoices
    4. Compute Available and Outstanding
    5. Guard Overpayment
    6. Consume Credit
    7. Create Ledger Entry
    8. Allocate FIFO
    9. Distribute Excess
    10. Record Income
    11. Accrue Commission
    12. Commit and Build Output
    """

    def __init__(self, session_manager, receipt_service=None, charge_calculator: ChargeCalculator | None = None):
        self.session_manager = session_manager
        self.receipt_service = receipt_service

        # Initialize all calculators
        self.validator = InputValidator()
        self.charge_calculator = charge_calculator or ChargeCalculator()
        self.allocator = InvoiceAllocator()
        self.distributor = OverpaymentDistributor(self.allocator, self.charge_calculator)
        self.commission_calculator = CommissionCalculator()
        self.output_builder = OutputBuilder()

    def record_payment(self, request: PaymentRequest) -> PaymentResult:
        """
        Record a payment through the complete pipeline.

        Either every write lands or none does; the receipt is issued after
        commit and its failure only adds a warning.
        """
        # Step 1: Validate (before any transaction is opened)
        self.validator.validate(request)

        with self.session_manager.session_scope() as session:
            repo = LedgerRepository(session)
            credit_store = CreditStore(repo)

            # Step 2: Lock the tenant row, then load terms and credit
            ctx = self._build_context(request, repo, credit_store)

            # Step 3: Resolve the invoice set
            ctx.invoices = self._resolve_invoices(ctx, repo)

            # Step 4: Money available vs. money owed
            ctx.available = request.amount_paid + ctx.existing_credit
            ctx.total_outstanding = sum((inv.balance for inv in ctx.invoices), Decimal('0'))
            ctx.payment_status = self._payment_status(ctx.available, ctx.total_outstanding)

            # Step 5: Refuse overpayments the caller did not allow
            if ctx.excess > 0 and not request.options.handle_overpayment:
                raise ConflictError(
                    f"Payment of {ctx.available} exceeds outstanding balance of {ctx.total_outstanding}",
                    available=ctx.available,
                    total_outstanding=ctx.total_outstanding,
                    excess=ctx.excess,
                )
            repo.check_deadline()

            # Step 6: Consume credit
            ctx.credit = credit_store.apply(ctx.existing_credit, ctx.total_outstanding)
            if ctx.credit.credit_used > 0:
                credit_store.store(request.tenant_id, ctx.credit.credit_after,
                                   f"Credit applied to payment on {ctx.paid_at:%Y-%m-%d}")

            # Step 7: Create the cash ledger entry
            entry = repo.create_payment_entry(
                tenant_id=request.tenant_id,
                status=ctx.payment_status,
                amount_paid=request.amount_paid,
                credit_used=ctx.credit.credit_used,
                total_due=ctx.total_outstanding,
                arrears=max(Decimal('0'), ctx.total_outstanding - ctx.available),
                period_start=ctx.target_period_start,
                paid_at=ctx.paid_at,
                notes=request.notes,
            )
            ctx.ledger_entry_id = entry.id

            # Step 8: Allocate FIFO against the invoice set
            ctx.allocation = self.allocator.allocate(ctx.invoices, ctx.available)
            repo.apply_allocations(ctx.allocation.allocations, entry.id)
            repo.check_deadline()

            # Step 9: Distribute any excess
            if ctx.allocation.remainder > 0:
                self._distribute_excess(ctx, repo, credit_store)

            # Step 10: Record the raw cash as income
            if request.amount_paid > 0:
                income = repo.create_income(
                    amount=request.amount_paid,
                    property_id=ctx.tenant.property_id,
                    tenant_id=request.tenant_id,
                    frequency=ctx.tenant.payment_policy.value,
                    payment_report_id=entry.id,
                )
                ctx.income_id = income.id

            # Step 11: Accrue commission on cash cleared against current obligations
            commission_base = min(ctx.total_outstanding, request.amount_paid)
            ctx.commission = self.commission_calculator.calculate(commission_base, ctx.tenant, ctx.paid_at)
            if ctx.commission is not None:
                row = repo.upsert_commission(
                    ctx.commission, note=f"Rent collected from {ctx.tenant.full_name or request.tenant_id}"
                )
                ctx.commission.commission_id = row.id

            repo.check_deadline()

            # Step 12: Build output (commit happens on leaving the scope)
            result = self.output_builder.build(ctx)

        logger.info(
            f"Recorded payment {ctx.ledger_entry_id} for tenant {request.tenant_id}: "
            f"cash={request.amount_paid} credit_used={ctx.credit.credit_used} status={ctx.payment_status.value}"
        )
        self._issue_receipt(result, ctx.tenant)
        return result

    def process_from_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Record a payment from raw dictionary input.

        Convenience method for API usage.
        """
        request = PaymentRequest.from_dict(data)
        result = self.record_payment(request)
        return self._result_to_dict(result)

    def record_income(
        self,
        property_id: str,
        amount,
        tenant_id: str | None = None,
        frequency: str = "MONTHLY",
        paid_at: datetime | None = None
    ) -> Dict[str, Any]:
        """
        Record income received directly against a property, outside invoicing.

        Commission accrues in the same transaction. The VAT context comes from
        the tenant when one is named, else no VAT is stripped.
        """
        amount = to_decimal(amount, "amount")
        self.validator.validate_income(amount, property_id, frequency)
        paid_at = paid_at or datetime.now()

        with self.session_manager.session_scope() as session:
            repo = LedgerRepository(session)
            prop = repo.get_property(property_id)

            if tenant_id:
                terms = repo.load_tenant_terms(tenant_id)
            else:
                terms = TenantTerms(tenant_id="", rent=Decimal('0'))
            terms = dataclasses.replace(
                terms,
                property_id=prop.id,
                manager_id=prop.manager_id,
                commission_fee=prop.commission_fee,
            )

            income = repo.create_income(
                amount=amount, property_id=prop.id, tenant_id=tenant_id, frequency=frequency
            )
            accrual = self.commission_calculator.calculate(amount, terms, paid_at)
            if accrual is not None:
                row = repo.upsert_commission(accrual, note=f"Direct income {income.id}")
                accrual.commission_id = row.id

            output = self.output_builder.build_income(income, accrual)

        logger.info(f"Recorded income {output['income']['id']} of {amount} for property {property_id}")
        return output

    def _build_context(self, request: PaymentRequest, repo: LedgerRepository, credit_store: CreditStore) -> PaymentContext:
        """Build the initial processing context."""
        tenant = repo.load_tenant_terms(request.tenant_id, lock=True)
        paid_at = request.paid_at or datetime.now()
        if not isinstance(paid_at, datetime):
            paid_at = datetime.combine(paid_at, time())

        if request.payment_period is not None:
            target = parse_period(request.payment_period, tenant.payment_policy)
        else:
            target = policy_period_start(paid_at.date(), tenant.payment_policy)

        return PaymentContext(
            request=request,
            tenant=tenant,
            paid_at=paid_at,
            target_period_start=target,
            existing_credit=credit_store.balance(request.tenant_id),
        )

    def _resolve_invoices(self, ctx: PaymentContext, repo: LedgerRepository) -> list[OutstandingInvoice]:
        """
        Explicit ids win; otherwise outstanding invoices scoped to the target
        period when it has any; otherwise one synthesised invoice if allowed.
        """
        request = ctx.request
        tenant = ctx.tenant

        if request.invoice_ids:
            return self.allocator.order_fifo(
                repo.invoices_by_ids(request.tenant_id, request.invoice_ids, lock=True)
            )

        outstanding = repo.outstanding_invoices(request.tenant_id, lock=True)
        if outstanding:
            key = period_key(ctx.target_period_start, tenant.payment_policy) if request.payment_period else None
            return self.allocator.select(outstanding, key)

        if not request.options.create_missing_invoices:
            raise NoInvoiceToAllocate(
                f"Tenant {request.tenant_id} has no outstanding invoices",
                tenant_id=request.tenant_id,
                amount_paid=request.amount_paid,
            )

        charge = self.charge_calculator.charge_for_period(tenant, ctx.target_period_start)
        invoice = repo.create_invoice(
            tenant,
            charge,
            period_key(ctx.target_period_start, tenant.payment_policy),
            due_date=ctx.target_period_start,
            notes="Generated while recording a payment",
        )
        ctx.synthesized_invoice_id = invoice.invoice_id
        return [invoice]

    def _distribute_excess(self, ctx: PaymentContext, repo: LedgerRepository, credit_store: CreditStore) -> None:
        """Other invoices, then prepaid periods, then credit."""
        tenant = ctx.tenant
        touched = {inv.invoice_id for inv in ctx.invoices}

        other_invoices = []
        if ctx.request.options.update_existing_invoices:
            other_invoices = [
                inv for inv in repo.outstanding_invoices(tenant.tenant_id, lock=True)
                if inv.invoice_id not in touched
            ]

        latest_prepaid = repo.latest_prepaid_period(tenant.tenant_id)
        prepay_after = max(ctx.target_period_start, latest_prepaid or date.min)

        distribution = self.distributor.distribute(
            ctx.allocation.remainder, tenant, other_invoices, prepay_after
        )
        repo.apply_allocations(distribution.invoice_allocations, ctx.ledger_entry_id)

        for period in distribution.prepaid_periods:
            prepaid = repo.create_prepaid_entry(tenant.tenant_id, period, ctx.ledger_entry_id, ctx.paid_at)
            period.entry_id = prepaid.id

        has_credit_row = ctx.existing_credit > 0 or repo.get_credit(tenant.tenant_id) is not None
        if distribution.credit_remainder > 0 or has_credit_row:
            credit_store.store(tenant.tenant_id, distribution.credit_remainder,
                               f"Overpayment from payment {ctx.ledger_entry_id}")

        logger.debug(
            f"Distributed excess {distribution.excess}: invoices={distribution.applied_to_invoices} "
            f"prepaid={distribution.prepaid_total} credit={distribution.credit_remainder}"
        )
        ctx.overpayment = distribution

    def _issue_receipt(self, result: PaymentResult, tenant: TenantTerms) -> None:
        if self.receipt_service is None:
            return
        payload = self.output_builder.receipt_payload(result, tenant)
        try:
            result.ledger_entry["receipt_url"] = self.receipt_service.issue(payload)
        except LedgerError as e:
            logger.warning(f"Receipt for payment {result.ledger_entry['id']} not issued: {e}")
            result.warnings.append(RECEIPT_PENDING)

    @staticmethod
    def _payment_status(available: Decimal, total_outstanding: Decimal) -> PaymentStatus:
        if available >= total_outstanding:
            return PaymentStatus.PAID
        if available > 0:
            return PaymentStatus.PARTIAL
        return PaymentStatus.UNPAID

    def _result_to_dict(self, result: PaymentResult) -> Dict[str, Any]:
        """Convert PaymentResult to dictionary for API response."""
        return {
            "ledger_entry": result.ledger_entry,
            "updated_invoices": result.updated_invoices,
            "overpayment": result.overpayment,
            "commission": result.commission,
            "credit_used": result.credit_used,
            "warnings": result.warnings,
        }
