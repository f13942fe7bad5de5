"""Shipment advancement — command and handler.

Applies a status advance that the courier backend has already
acknowledged. The aggregate re-plans the transition from the submitted
checklist, so an invalid advance is refused here as well.
"""

import json

from protean import handle
from protean.fields import Float, Identifier, String, Text
from protean.utils.globals import current_domain

from courier.domain import courier
from courier.shipment.gates import ChecklistGate, GateMode
from courier.shipment.shipment import Shipment


@courier.command(part_of="Shipment")
class AdvanceShipment:
    shipment_id = Identifier(required=True)
    action = String(required=True, max_length=50)
    checklist = Text(required=True)  # JSON object {flag: bool}, in checklist order
    mode = String(required=True, max_length=3, choices=GateMode)
    payload = Text()  # JSON object with stage details
    server_fee = Float()


def gate_from_command(command) -> ChecklistGate:
    flags = json.loads(command.checklist) if command.checklist else {}
    return ChecklistGate(flags=tuple((name, bool(value)) for name, value in flags.items()), mode=GateMode(command.mode))


@courier.command_handler(part_of=Shipment)
class AdvanceShipmentHandler:
    @handle(AdvanceShipment)
    def advance_shipment(self, command):
        repo = current_domain.repository_for(Shipment)
        shipment = repo.get(command.shipment_id)
        payload = json.loads(command.payload) if command.payload else {}
        target = shipment.perform(
            command.action,
            gate_from_command(command),
            payload,
            server_fee=command.server_fee,
        )
        repo.add(shipment)
        return target.value
