"""
Two-Stage Validation Pipeline

DESIGN DECISION: A confirmation payload is validated in two distinct stages:

STAGE 1 - SCHEMA VALIDATION:
- Type checking of the JSON body (pydantic)
- Ids are UUIDs, items is a list, flags are booleans

STAGE 2 - SEMANTIC VALIDATION:
- At least one line item, and not absurdly many
- A readable store tax rate
- Future or unreadable receipt dates and times (warnings only)

Per-line numbers are deliberately NOT errors here. A bad number on one
line drops that line during confirmation and is reported in `skipped`;
it must not reject the rest of the receipt.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for human review.
"""

from datetime import date, timedelta
from typing import Any, Optional

from pydantic import ValidationError

from household_ledger.config import get_settings
from household_ledger.models.receipt import (
    ConfirmReceiptRequest,
    ValidationIssue,
    ValidationResult,
    issues_from_validation_error,
)
from household_ledger.reconciliation.coercion import parse_receipt_date, parse_receipt_time
from household_ledger.reconciliation.tax import TaxCalculator


class ConfirmationValidator:
    """
    Validates a receipt confirmation payload through a two-stage pipeline.

    Stage 1: Schema validation (builds the request model)
    Stage 2: Semantic validation (runs only when stage 1 passed)
    """

    def __init__(self):
        self._settings = get_settings().app

    def _validate_schema(
        self,
        payload: Any,
    ) -> tuple[Optional[ConfirmReceiptRequest], list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (request or None, list_of_issues)
        """
        if not isinstance(payload, dict):
            return None, [ValidationIssue(
                field="body",
                issue_type="invalid_type",
                message="Request body must be a JSON object",
            )]

        try:
            return ConfirmReceiptRequest.model_validate(payload), []
        except ValidationError as e:
            return None, issues_from_validation_error(e)

    def _validate_semantic(
        self,
        request: ConfirmReceiptRequest,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Checks:
        - Item count
        - Store tax rate
        - Receipt date and time

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if not request.items:
            issues.append(ValidationIssue(
                field="items",
                issue_type="required",
                message="At least one item is required",
                suggested_fix="Add the line items from the receipt",
            ))

        max_items = self._settings.max_items_per_receipt
        if len(request.items) > max_items:
            issues.append(ValidationIssue(
                field="items",
                issue_type="too_many",
                message=f"A receipt can have at most {max_items} items",
            ))

        if request.store is not None and request.store.tax_rate is not None:
            try:
                TaxCalculator.to_stored_rate(request.store.tax_rate)
            except ValueError as e:
                issues.append(ValidationIssue(
                    field="store.tax_rate",
                    issue_type="invalid_number",
                    message=f"Invalid tax rate: {e}",
                    suggested_fix="Enter the rate as a percent (8.25) or a fraction (0.0825)",
                ))

        receipt_date, date_warning = parse_receipt_date(request.transaction.date)
        if date_warning:
            issues.append(ValidationIssue(
                field="transaction.date",
                issue_type="unreadable_date",
                message=date_warning,
                severity="warning",
                suggested_fix="Use the YYYY-MM-DD format",
            ))

        # Future date check (with tolerance)
        max_future_date = date.today() + timedelta(days=self._settings.future_date_tolerance_days)
        if receipt_date > max_future_date:
            issues.append(ValidationIssue(
                field="transaction.date",
                issue_type="future_date",
                message=f"Receipt date ({receipt_date}) is in the future",
                severity="warning",
                suggested_fix="Please verify the date is correct",
            ))

        _, time_warning = parse_receipt_time(request.transaction.time)
        if time_warning:
            issues.append(ValidationIssue(
                field="transaction.time",
                issue_type="unreadable_time",
                message=time_warning,
                severity="warning",
                suggested_fix="Use the HH:MM format",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, payload: Any) -> ValidationResult:
        """
        Run full two-stage validation pipeline.

        Args:
            payload: Decoded JSON body of the confirm request

        Returns:
            ValidationResult with all issues found, and the parsed request
            when the schema stage passed
        """
        request, all_issues = self._validate_schema(payload)
        schema_valid = request is not None

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(request)
            all_issues.extend(semantic_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        return ValidationResult(
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            is_valid=schema_valid and semantic_valid,
            issues=all_issues,
            warnings=warnings,
            request=request,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """
        Generate a user-friendly summary of validation results.
        """
        if result.is_valid and not result.warnings:
            return "All checks passed."

        lines = []

        if result.has_errors:
            lines.append("The receipt could not be saved:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.field}: {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
