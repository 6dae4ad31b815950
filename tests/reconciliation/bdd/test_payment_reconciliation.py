"""BDD tests for payment webhook reconciliation."""

from pytest_bdd import scenarios

scenarios("features/payment_reconciliation.feature")
