"""Pending actions handed from the UI to the scheduling core.

Each user intent (save, delete, log) is a plain value with a ``type`` tag.
The UI builds one when a dialog opens and dispatches it on confirm; no
callback captures state between the two.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .logging import log_extra
from .models import IntakeLog, PunctualItem, RecurringItem
from .service import CareScheduleService

logger = logging.getLogger(__name__)


class SaveMedication(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["medication.save"] = "medication.save"
    item: RecurringItem


class DeleteMedication(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["medication.delete"] = "medication.delete"
    item_id: str


class SaveAppointment(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["appointment.save"] = "appointment.save"
    item: PunctualItem


class DeleteAppointment(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["appointment.delete"] = "appointment.delete"
    item_id: str


class LogIntake(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["intake.log"] = "intake.log"
    log: IntakeLog


PendingAction = Annotated[
    Union[SaveMedication, DeleteMedication, SaveAppointment, DeleteAppointment, LogIntake],
    Field(discriminator="type"),
]

_pending_action_adapter: TypeAdapter[Any] = TypeAdapter(PendingAction)


def parse_action(data: dict[str, Any]) -> PendingAction:
    """Validate a tagged dict into its action model.

    Raises pydantic.ValidationError on an unknown ``type`` or bad fields.
    """
    return _pending_action_adapter.validate_python(data)


# Handler signature: async def handler(service, user_id, action) -> result
ActionHandlerFn = Callable[[CareScheduleService, str, Any], Awaitable[Any]]

_registry: dict[str, ActionHandlerFn] = {}


def register(action_type: str) -> Callable[[ActionHandlerFn], ActionHandlerFn]:
    """Register the handler for an action type (e.g. 'medication.save')."""

    def decorator(fn: ActionHandlerFn) -> ActionHandlerFn:
        if action_type in _registry:
            raise ValueError(f"Duplicate handler for action_type={action_type!r}")
        _registry[action_type] = fn
        return fn

    return decorator


def get_handler(action_type: str) -> ActionHandlerFn | None:
    return _registry.get(action_type)


def registered_types() -> list[str]:
    return sorted(_registry)


async def dispatch(action: PendingAction, service: CareScheduleService, user_id: str) -> Any:
    handler = get_handler(action.type)
    if handler is None:
        raise ValueError(f"No handler for action_type={action.type!r}")
    logger.info("Dispatching %s", action.type, extra=log_extra(user_id=user_id, action=action.type))
    return await handler(service, user_id, action)


@register("medication.save")
async def _save_medication(service: CareScheduleService, user_id: str, action: SaveMedication):
    return await service.save_medication(user_id, action.item)


@register("medication.delete")
async def _delete_medication(service: CareScheduleService, user_id: str, action: DeleteMedication):
    return await service.delete_medication(user_id, action.item_id)


@register("appointment.save")
async def _save_appointment(service: CareScheduleService, user_id: str, action: SaveAppointment):
    return await service.save_appointment(user_id, action.item)


@register("appointment.delete")
async def _delete_appointment(service: CareScheduleService, user_id: str, action: DeleteAppointment):
    return await service.delete_appointment(user_id, action.item_id)


@register("intake.log")
async def _log_intake(service: CareScheduleService, user_id: str, action: LogIntake):
    return await service.log_intake(user_id, action.log)
