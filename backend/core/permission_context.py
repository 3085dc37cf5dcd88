"""Evaluation context for permission rules.

Every rule sees the same fixed shape:

    {
        "user": {"id", "email", "name", "role", "teams": [team names]},
        "workflow" | "process" | "form": {"responsibleTeam", "teams"},
        "data": {...merged run / submission fields},
    }

Team *names* are the rule vocabulary, so rules stay readable for the
people who author them.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from core.constants import UserRole


@dataclass(frozen=True)
class Principal:
    """The already authenticated user a request acts for."""

    id: str
    email: str
    name: str
    role: UserRole = UserRole.USER
    teams: tuple[str, ...] = ()

    @classmethod
    def from_user(cls, user) -> "Principal":
        """Build a principal from a ``User`` row with its teams loaded."""
        return cls(
            id=user.id,
            email=user.email,
            name=user.name or "",
            role=UserRole(user.role),
            teams=tuple(team.name for team in user.teams),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    def as_context(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role.value,
            "teams": list(self.teams),
        }


@dataclass
class AccessTarget:
    """What a rule is checked against: the rule text plus its context inputs.

    Attributes:
        rule: Stored rule (JSON text or ``"true"``)
        scopes: Entity scopes keyed by ``workflow``/``process``/``form``
        data: Merged submission data
    """

    rule: Any
    scopes: dict[str, dict] = field(default_factory=dict)
    data: dict = field(default_factory=dict)


def entity_scope(entity) -> dict:
    """Responsible team and assigned team names of a workflow, process or form."""
    responsible = getattr(entity, "responsible_team", None)
    return {
        "responsibleTeam": responsible.name if responsible is not None else None,
        "teams": [team.name for team in (getattr(entity, "teams", None) or [])],
    }


def merge_run_data(entries: Iterable[Any]) -> dict:
    """Shallow right-biased merge of run data.

    ``entries`` are dicts or objects with a ``data`` attribute (process
    runs), merged in order so later keys overwrite earlier ones.
    """
    merged: dict = {}
    for entry in entries:
        data = entry if isinstance(entry, Mapping) else getattr(entry, "data", None)
        if isinstance(data, Mapping):
            merged.update(data)
    return merged


def process_data_map(process_runs: Iterable[Any]) -> dict:
    """Per-process view of a run's data, keyed by process name."""
    result = {}
    for run in process_runs:
        process = run.process
        result[process.name] = {
            "id": run.id,
            "status": run.status,
            "data": run.data or {},
            "processName": process.name,
            "processDescription": process.description,
        }
    return result


def build_context(
    principal: Principal,
    scopes: Optional[Mapping[str, dict]] = None,
    data: Optional[Mapping[str, Any]] = None,
) -> dict:
    """Assemble the rule evaluation context.

    Args:
        principal: Requesting user
        scopes: Entity scopes, e.g. ``{"workflow": entity_scope(wf)}``
        data: Already merged submission data

    Returns:
        Context dict handed to ``core.rules.evaluate``
    """
    context: dict = {"user": principal.as_context()}
    for name, scope in (scopes or {}).items():
        context[name] = {
            "responsibleTeam": scope.get("responsibleTeam"),
            "teams": list(scope.get("teams") or []),
        }
    context["data"] = dict(data or {})
    return context
