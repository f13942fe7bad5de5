"""BDD tests for the shipment lifecycle."""

from pytest_bdd import scenarios

scenarios("features/shipment_lifecycle.feature")
