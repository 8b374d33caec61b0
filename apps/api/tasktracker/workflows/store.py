from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.audit import write_audit
from tasktracker.errors import CannotDeleteDefault, NotFoundError, ValidationError
from tasktracker.models import Task, WorkflowDefinition, utcnow
from tasktracker.workflows.rules import TransitionCheck, WorkflowRules, check_rules, rules_from_config, validate_transition

_UNSET: Any = object()

DEFAULT_WORKFLOW: dict[str, Any] = {
  "name": "Default Workflow",
  "description": "Standard task workflow for the team",
  "statuses": [
    {"id": "pending", "name": "Pending", "color": "#6b7280", "order": 1},
    {"id": "in_progress", "name": "In Progress", "color": "#3b82f6", "order": 2},
    {"id": "waiting", "name": "Waiting", "color": "#f59e0b", "order": 3},
    {"id": "review", "name": "In Review", "color": "#8b5cf6", "order": 4},
    {"id": "completed", "name": "Completed", "color": "#10b981", "order": 5},
    {"id": "cancelled", "name": "Cancelled", "color": "#ef4444", "order": 6},
    {"id": "deferred", "name": "Deferred", "color": "#f97316", "order": 7},
  ],
  "transitions": [
    {"from": "pending", "to": ["in_progress", "cancelled"]},
    {"from": "in_progress", "to": ["waiting", "review", "completed", "deferred", "cancelled"]},
    {"from": "waiting", "to": ["in_progress", "completed", "deferred"]},
    {"from": "review", "to": ["in_progress", "completed", "deferred"]},
    {"from": "deferred", "to": ["in_progress", "cancelled"]},
  ],
  "role_restrictions": {},
}


def rules_for(definition: WorkflowDefinition) -> WorkflowRules:
  return rules_from_config(definition.statuses, definition.transitions, definition.role_restrictions)


def _checked_config(statuses: Any, transitions: Any, role_restrictions: Any) -> WorkflowRules:
  if not isinstance(statuses, list) or not isinstance(transitions, list):
    raise ValidationError("Statuses and transitions must be lists")
  if role_restrictions is not None and not isinstance(role_restrictions, dict):
    raise ValidationError("Role restrictions must be a mapping of 'from->to' to role names")
  rules = rules_from_config(statuses, transitions, role_restrictions or {})
  check_rules(rules)
  return rules


async def _clear_default(db: AsyncSession, *, except_id: str | None = None) -> None:
  # Runs in the caller's transaction together with the flag being set, so
  # there is never a committed state with zero or two defaults.
  stmt = update(WorkflowDefinition).where(WorkflowDefinition.is_default.is_(True))
  if except_id:
    stmt = stmt.where(WorkflowDefinition.id != except_id)
  await db.execute(stmt.values(is_default=False))


async def list_definitions(db: AsyncSession) -> list[WorkflowDefinition]:
  res = await db.execute(
    select(WorkflowDefinition).order_by(WorkflowDefinition.is_default.desc(), WorkflowDefinition.name.asc())
  )
  return list(res.scalars().all())


async def get_definition(db: AsyncSession, workflow_id: str) -> WorkflowDefinition:
  res = await db.execute(select(WorkflowDefinition).where(WorkflowDefinition.id == workflow_id))
  wf = res.scalar_one_or_none()
  if not wf:
    raise NotFoundError("Workflow not found", code="WORKFLOW_NOT_FOUND")
  return wf


async def get_default(db: AsyncSession) -> WorkflowDefinition:
  res = await db.execute(select(WorkflowDefinition).where(WorkflowDefinition.is_default.is_(True)).limit(1))
  wf = res.scalar_one_or_none()
  if not wf:
    raise NotFoundError("No default workflow configured", code="WORKFLOW_NOT_FOUND")
  return wf


async def create_definition(
  db: AsyncSession,
  *,
  name: str,
  statuses: list[dict[str, Any]],
  transitions: list[dict[str, Any]],
  role_restrictions: dict[str, list[str]] | None = None,
  description: str | None = None,
  is_default: bool = False,
  actor_id: str | None = None,
) -> WorkflowDefinition:
  clean_name = (name or "").strip()
  if not clean_name:
    raise ValidationError("Name is required")
  _checked_config(statuses, transitions, role_restrictions)

  if is_default:
    await _clear_default(db)
  wf = WorkflowDefinition(
    name=clean_name,
    description=description,
    is_default=bool(is_default),
    statuses=statuses,
    transitions=transitions,
    role_restrictions=role_restrictions or {},
  )
  db.add(wf)
  await db.flush()
  await write_audit(
    db,
    event_type="workflow.created",
    entity_type="WorkflowDefinition",
    entity_id=wf.id,
    actor_id=actor_id,
    payload={"name": wf.name, "isDefault": wf.is_default},
  )
  await db.commit()
  return wf


async def update_definition(
  db: AsyncSession,
  workflow_id: str,
  *,
  name: str | None = _UNSET,
  description: str | None = _UNSET,
  statuses: list[dict[str, Any]] = _UNSET,
  transitions: list[dict[str, Any]] = _UNSET,
  role_restrictions: dict[str, list[str]] = _UNSET,
  is_default: bool = _UNSET,
  actor_id: str | None = None,
) -> WorkflowDefinition:
  wf = await get_definition(db, workflow_id)
  changed: list[str] = []

  if name is not _UNSET and name is not None:
    clean_name = name.strip()
    if not clean_name:
      raise ValidationError("Name is required")
    wf.name = clean_name
    changed.append("name")
  if description is not _UNSET:
    wf.description = description
    changed.append("description")

  if statuses is not _UNSET or transitions is not _UNSET or role_restrictions is not _UNSET:
    new_statuses = wf.statuses if statuses is _UNSET or statuses is None else statuses
    new_transitions = wf.transitions if transitions is _UNSET or transitions is None else transitions
    new_roles = wf.role_restrictions if role_restrictions is _UNSET or role_restrictions is None else role_restrictions
    _checked_config(new_statuses, new_transitions, new_roles)
    wf.statuses = new_statuses
    wf.transitions = new_transitions
    wf.role_restrictions = new_roles
    changed.extend(k for k, v in (("statuses", statuses), ("transitions", transitions), ("roleRestrictions", role_restrictions)) if v is not _UNSET)

  if is_default is not _UNSET and is_default is not None:
    if is_default:
      await _clear_default(db, except_id=wf.id)
    wf.is_default = bool(is_default)
    changed.append("isDefault")

  wf.updated_at = utcnow()
  await write_audit(
    db,
    event_type="workflow.updated",
    entity_type="WorkflowDefinition",
    entity_id=wf.id,
    actor_id=actor_id,
    payload={"changed": sorted(changed)},
  )
  await db.commit()
  return wf


async def delete_definition(db: AsyncSession, workflow_id: str, *, actor_id: str | None = None) -> None:
  wf = await get_definition(db, workflow_id)
  if wf.is_default:
    raise CannotDeleteDefault()
  await db.execute(update(Task).where(Task.workflow_id == wf.id).values(workflow_id=None))
  await db.delete(wf)
  await write_audit(
    db,
    event_type="workflow.deleted",
    entity_type="WorkflowDefinition",
    entity_id=workflow_id,
    actor_id=actor_id,
    payload={"name": wf.name},
  )
  await db.commit()


async def check_task_transition(
  db: AsyncSession,
  task: Task,
  to_status: str,
  acting_role: str | None,
  *,
  workflow_id: str | None = None,
) -> TransitionCheck:
  """Gate for the task-mutation path: validate against the task's workflow, else the default."""
  wid = workflow_id or task.workflow_id
  wf = await get_definition(db, wid) if wid else await get_default(db)
  return validate_transition(rules_for(wf), task.status, to_status, acting_role)


async def ensure_default_workflow(db: AsyncSession) -> WorkflowDefinition:
  res = await db.execute(select(WorkflowDefinition).where(WorkflowDefinition.is_default.is_(True)).limit(1))
  wf = res.scalar_one_or_none()
  if wf:
    return wf
  return await create_definition(
    db,
    name=DEFAULT_WORKFLOW["name"],
    description=DEFAULT_WORKFLOW["description"],
    statuses=DEFAULT_WORKFLOW["statuses"],
    transitions=DEFAULT_WORKFLOW["transitions"],
    role_restrictions=DEFAULT_WORKFLOW["role_restrictions"],
    is_default=True,
  )
