from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.deps import get_current_user, get_db, require_admin
from tasktracker.models import User, WorkflowDefinition
from tasktracker.schemas import (
  TransitionCheckIn,
  TransitionCheckOut,
  WorkflowCreateIn,
  WorkflowOut,
  WorkflowUpdateIn,
)
from tasktracker.workflows import store
from tasktracker.workflows.rules import allowed_targets, validate_transition

router = APIRouter(prefix="/workflows", tags=["workflows"])


def _workflow_out(wf: WorkflowDefinition) -> WorkflowOut:
  return WorkflowOut(
    id=wf.id,
    name=wf.name,
    description=wf.description,
    isDefault=wf.is_default,
    statuses=list(wf.statuses or []),
    transitions=list(wf.transitions or []),
    roleRestrictions=dict(wf.role_restrictions or {}),
    createdAt=wf.created_at,
    updatedAt=wf.updated_at,
  )


@router.get("", response_model=list[WorkflowOut])
async def list_workflows(_: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[WorkflowOut]:
  return [_workflow_out(wf) for wf in await store.list_definitions(db)]


@router.get("/default", response_model=WorkflowOut)
async def get_default_workflow(_: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> WorkflowOut:
  return _workflow_out(await store.get_default(db))


@router.get("/{workflow_id}", response_model=WorkflowOut)
async def get_workflow(workflow_id: str, _: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> WorkflowOut:
  return _workflow_out(await store.get_definition(db, workflow_id))


@router.post("", response_model=WorkflowOut, status_code=201)
async def create_workflow(
  payload: WorkflowCreateIn,
  admin: User = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> WorkflowOut:
  wf = await store.create_definition(
    db,
    name=payload.name,
    description=payload.description,
    statuses=[s.model_dump() for s in payload.statuses],
    transitions=[t.as_config() for t in payload.transitions],
    role_restrictions=payload.roleRestrictions,
    is_default=payload.isDefault,
    actor_id=admin.id,
  )
  return _workflow_out(wf)


@router.patch("/{workflow_id}", response_model=WorkflowOut)
async def update_workflow(
  workflow_id: str,
  payload: WorkflowUpdateIn,
  admin: User = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> WorkflowOut:
  fields_set = payload.model_fields_set
  changes: dict[str, Any] = {}
  if "name" in fields_set and payload.name is not None:
    changes["name"] = payload.name
  if "description" in fields_set:
    changes["description"] = payload.description
  if "statuses" in fields_set and payload.statuses is not None:
    changes["statuses"] = [s.model_dump() for s in payload.statuses]
  if "transitions" in fields_set and payload.transitions is not None:
    changes["transitions"] = [t.as_config() for t in payload.transitions]
  if "roleRestrictions" in fields_set and payload.roleRestrictions is not None:
    changes["role_restrictions"] = payload.roleRestrictions
  if "isDefault" in fields_set and payload.isDefault is not None:
    changes["is_default"] = payload.isDefault
  wf = await store.update_definition(db, workflow_id, actor_id=admin.id, **changes)
  return _workflow_out(wf)


@router.delete("/{workflow_id}")
async def delete_workflow(
  workflow_id: str,
  admin: User = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> dict:
  await store.delete_definition(db, workflow_id, actor_id=admin.id)
  return {"ok": True}


@router.post("/{workflow_id}/validate-transition", response_model=TransitionCheckOut)
async def validate_workflow_transition(
  workflow_id: str,
  payload: TransitionCheckIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TransitionCheckOut:
  rules = store.rules_for(await store.get_definition(db, workflow_id))
  # Callers may check on behalf of another role; default to their own.
  role = payload.role or user.role
  check = validate_transition(rules, payload.fromStatus, payload.toStatus, role)
  return TransitionCheckOut(
    valid=check.valid,
    reason=check.reason,
    allowedTargets=allowed_targets(rules, payload.fromStatus, role),
  )
