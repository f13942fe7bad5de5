"""Shipment workflow — drives staff actions through the courier backend.

Each advance follows the same sequence:

1. Build the action's checklist gate from the ticked flags.
2. Plan the transition on the aggregate. A failing gate, a terminal
   status or a missing edge stops here, before any network call.
3. Write the new status to the backend and wait for its acknowledgement.
4. Only then apply the advance locally through the AdvanceShipment command.

One mutating call per shipment may be in flight. A trigger that arrives
while another is running is ignored and returns ``None``; it is not queued.
"""

import json

import structlog
from protean.utils.globals import current_domain

from courier.errors import STATUS_FALLBACK_MESSAGE, InvalidTransitionError, RemoteOperationError
from courier.gateway import get_gateway
from courier.gateway.port import CourierGateway
from courier.shipment.advancement import AdvanceShipment
from courier.shipment.gates import ChecklistGate
from courier.shipment.shipment import Action, Shipment

logger = structlog.get_logger(__name__)


class ShipmentWorkflow:
    def __init__(self, gateway: CourierGateway | None = None) -> None:
        self._gateway = gateway
        self._in_flight: set[str] = set()

    @property
    def gateway(self) -> CourierGateway:
        return self._gateway or get_gateway()

    def is_busy(self, shipment_id: str) -> bool:
        return str(shipment_id) in self._in_flight

    def gate_for(self, action: Action | str, checklist: dict[str, bool] | None = None) -> ChecklistGate:
        """The gate a caller reads to enable or disable the next action."""
        return ChecklistGate.for_action(action, **(checklist or {}))

    async def advance(
        self,
        shipment_id: str,
        action: Action | str,
        checklist: dict[str, bool] | None = None,
        payload: dict | None = None,
    ) -> str | None:
        """Advance a shipment; returns the new status, or ``None`` if busy."""
        shipment_id = str(shipment_id)
        if shipment_id in self._in_flight:
            logger.info("Shipment advance ignored while another is in flight", shipment_id=shipment_id)
            return None

        self._in_flight.add(shipment_id)
        try:
            return await self._advance(shipment_id, action, checklist or {}, payload or {})
        finally:
            self._in_flight.discard(shipment_id)

    async def _advance(self, shipment_id: str, action, checklist: dict, payload: dict) -> str:
        shipment = current_domain.repository_for(Shipment).get(shipment_id)
        gate = self.gate_for(action, checklist)
        action_name = getattr(action, "value", action)

        try:
            target = shipment.plan(action, gate, payload)
        except InvalidTransitionError as exc:
            logger.warning(
                "Shipment advance refused",
                shipment_id=shipment_id,
                action=action_name,
                status=shipment.status,
                errors=exc.messages,
            )
            raise

        ack = await self.gateway.update_status(
            shipment.order_id,
            target.value,
            shipment.status_payload(action, payload),
        )
        if ack.status != target.value:
            raise RemoteOperationError(
                f"Backend acknowledged {ack.status} instead of {target.value}",
                fallback=STATUS_FALLBACK_MESSAGE,
            )

        new_status = current_domain.process(
            AdvanceShipment(
                shipment_id=shipment_id,
                action=action_name,
                checklist=json.dumps(gate.as_dict()),
                mode=gate.mode.value,
                payload=json.dumps(payload, default=str),
                server_fee=ack.actual_fee,
            ),
            asynchronous=False,
        )
        logger.info(
            "Shipment advanced",
            shipment_id=shipment_id,
            order_id=shipment.order_id,
            action=action_name,
            from_status=shipment.status,
            status=new_status,
        )
        return new_status


_workflow: ShipmentWorkflow | None = None


def get_workflow() -> ShipmentWorkflow:
    """Process-wide workflow, so the in-flight guard spans requests."""
    global _workflow
    if _workflow is None:
        _workflow = ShipmentWorkflow()
    return _workflow
