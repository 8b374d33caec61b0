"""
Workflow state machine as data.

A workflow is a frozen value (statuses, transitions, role restrictions) and
validation is a pure function over it, so several definitions can coexist and
be swapped without code changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from tasktracker.errors import ValidationError

REASON_SAME_STATUS = "same status"
REASON_NO_RULE = "no rule for current status"
REASON_NOT_ALLOWED = "transition not allowed"
REASON_ROLE = "role not authorized"


@dataclass(frozen=True)
class WorkflowStatus:
  id: str
  name: str
  color: str = "#6b7280"
  order: int = 0


@dataclass(frozen=True)
class WorkflowTransition:
  from_status: str
  to_statuses: frozenset[str]


@dataclass(frozen=True)
class WorkflowRules:
  statuses: tuple[WorkflowStatus, ...]
  transitions: tuple[WorkflowTransition, ...]
  role_restrictions: Mapping[str, frozenset[str]] = field(default_factory=dict)

  def status_ids(self) -> set[str]:
    return {s.id for s in self.statuses}

  def transition_from(self, status_id: str) -> WorkflowTransition | None:
    for t in self.transitions:
      if t.from_status == status_id:
        return t
    return None


@dataclass(frozen=True)
class TransitionCheck:
  valid: bool
  reason: str | None = None


def restriction_key(from_status: str, to_status: str) -> str:
  return f"{from_status}->{to_status}"


def validate_transition(rules: WorkflowRules, from_status: str, to_status: str, acting_role: str | None) -> TransitionCheck:
  # Staying in the same status is never a transition, whatever the config says.
  if from_status == to_status:
    return TransitionCheck(valid=False, reason=REASON_SAME_STATUS)

  rule = rules.transition_from(from_status)
  if rule is None:
    return TransitionCheck(valid=False, reason=REASON_NO_RULE)
  if to_status not in rule.to_statuses:
    return TransitionCheck(valid=False, reason=REASON_NOT_ALLOWED)

  allowed_roles = rules.role_restrictions.get(restriction_key(from_status, to_status))
  if allowed_roles and acting_role not in allowed_roles:
    return TransitionCheck(valid=False, reason=REASON_ROLE)
  return TransitionCheck(valid=True)


def allowed_targets(rules: WorkflowRules, from_status: str, acting_role: str | None) -> list[str]:
  """Statuses reachable from `from_status` by `acting_role`, in workflow order."""
  order = {s.id: (s.order, idx) for idx, s in enumerate(rules.statuses)}
  rule = rules.transition_from(from_status)
  if rule is None:
    return []
  out = [t for t in rule.to_statuses if validate_transition(rules, from_status, t, acting_role).valid]
  return sorted(out, key=lambda sid: order.get(sid, (1 << 30, 0)))


def rules_from_config(
  statuses: Iterable[Mapping[str, Any]],
  transitions: Iterable[Mapping[str, Any]],
  role_restrictions: Mapping[str, Iterable[str]] | None,
) -> WorkflowRules:
  """Build rules from the stored JSON shape: statuses[{id,name,color,order}], transitions[{from,to[]}]."""
  st: list[WorkflowStatus] = []
  for raw in statuses or []:
    sid = str(raw.get("id") or "").strip()
    if not sid:
      raise ValidationError("Every status needs an id")
    st.append(
      WorkflowStatus(
        id=sid,
        name=str(raw.get("name") or sid),
        color=str(raw.get("color") or "#6b7280"),
        order=int(raw.get("order") or 0),
      )
    )
  tr: list[WorkflowTransition] = []
  for raw in transitions or []:
    src = str(raw.get("from") or "").strip()
    if not src:
      raise ValidationError("Every transition needs a 'from' status")
    targets = raw.get("to") or []
    if isinstance(targets, str):
      targets = [targets]
    tr.append(WorkflowTransition(from_status=src, to_statuses=frozenset(str(t) for t in targets)))
  rr = {str(k): frozenset(str(r) for r in (v or [])) for k, v in (role_restrictions or {}).items()}
  return WorkflowRules(statuses=tuple(st), transitions=tuple(tr), role_restrictions=rr)


def check_rules(rules: WorkflowRules) -> None:
  """Structural checks run before a definition is stored."""
  if not rules.statuses:
    raise ValidationError("At least one status is required")
  ids = [s.id for s in rules.statuses]
  if len(set(ids)) != len(ids):
    raise ValidationError("Status ids must be unique")
  known = set(ids)

  seen_from: set[str] = set()
  for t in rules.transitions:
    if t.from_status not in known:
      raise ValidationError(f"Transition references unknown status '{t.from_status}'")
    if t.from_status in seen_from:
      raise ValidationError(f"Duplicate transition entry for '{t.from_status}'")
    seen_from.add(t.from_status)
    unknown = sorted(t.to_statuses - known)
    if unknown:
      raise ValidationError(f"Transition from '{t.from_status}' references unknown status '{unknown[0]}'")

  for key in rules.role_restrictions:
    src, sep, dst = key.partition("->")
    if not sep or not src or not dst:
      raise ValidationError(f"Role restriction key '{key}' must look like 'from->to'")
    if src not in known or dst not in known:
      raise ValidationError(f"Role restriction '{key}' references an unknown status")


def rules_to_config(rules: WorkflowRules) -> dict[str, Any]:
  return {
    "statuses": [{"id": s.id, "name": s.name, "color": s.color, "order": s.order} for s in rules.statuses],
    "transitions": [{"from": t.from_status, "to": sorted(t.to_statuses)} for t in rules.transitions],
    "roleRestrictions": {k: sorted(v) for k, v in rules.role_restrictions.items()},
  }
