"""Read-only query access to agreements, installments, payments and case history."""

from settlement_kernel.selectors.agreement_selector import AgreementSelector
from settlement_kernel.selectors.case_selector import CaseSelector

__all__ = ["AgreementSelector", "CaseSelector"]
