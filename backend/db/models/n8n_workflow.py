"""N8n workflow reference rows and per-event bindings."""

from sqlalchemy import ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import Base, BaseModel


class N8nWorkflow(BaseModel):
    """An external n8n workflow that lifecycle events can trigger.

    Attributes:
        id: Unique identifier (UUID string)
        workflow_id: n8n's own workflow id, used in the webhook URL
        name: Human readable name
    """

    __tablename__ = "n8n_workflows"

    workflow_id: Mapped[str] = mapped_column(nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(nullable=False, default="")


class WorkflowN8nBinding(Base):
    """Connects a workflow lifecycle event to an n8n workflow."""

    __tablename__ = "workflow_n8n_bindings"

    workflow_id: Mapped[str] = mapped_column(
        ForeignKey("workflows.id", ondelete="CASCADE"), primary_key=True
    )
    n8n_workflow_id: Mapped[str] = mapped_column(
        ForeignKey("n8n_workflows.id", ondelete="CASCADE"), primary_key=True
    )
    event: Mapped[str] = mapped_column(primary_key=True)

    n8n_workflow: Mapped["N8nWorkflow"] = relationship("N8nWorkflow", lazy="selectin")


class ProcessN8nBinding(Base):
    """Connects a process event to an n8n workflow."""

    __tablename__ = "process_n8n_bindings"

    process_id: Mapped[str] = mapped_column(
        ForeignKey("processes.id", ondelete="CASCADE"), primary_key=True
    )
    n8n_workflow_id: Mapped[str] = mapped_column(
        ForeignKey("n8n_workflows.id", ondelete="CASCADE"), primary_key=True
    )
    event: Mapped[str] = mapped_column(primary_key=True)

    n8n_workflow: Mapped["N8nWorkflow"] = relationship("N8nWorkflow", lazy="selectin")


class FormN8nBinding(Base):
    """Connects a form submission event to an n8n workflow."""

    __tablename__ = "form_n8n_bindings"

    form_id: Mapped[str] = mapped_column(
        ForeignKey("forms.id", ondelete="CASCADE"), primary_key=True
    )
    n8n_workflow_id: Mapped[str] = mapped_column(
        ForeignKey("n8n_workflows.id", ondelete="CASCADE"), primary_key=True
    )
    event: Mapped[str] = mapped_column(primary_key=True)

    n8n_workflow: Mapped["N8nWorkflow"] = relationship("N8nWorkflow", lazy="selectin")


def bindings_for(bindings, event) -> list:
    """Bindings of one event bucket."""
    return [b for b in bindings if b.event == event]
