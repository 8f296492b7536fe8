"""
Kanban models.

    KanbanBoard ── KanbanColumn (ordered by position) ── KanbanCard (ordered by position)
    KanbanCard ─┬─ KanbanCardComment     (append-only)
                └─ KanbanCardAttachment  (append-only; file stored under UPLOAD_FOLDER)

A board has exactly one owner. Private boards are readable by the owner
and by tenant admins only.
"""

from app.models import db
from app.models.base import TenantModel, _utcnow, iso

CARD_PRIORITIES = ("low", "medium", "high")


class KanbanBoard(TenantModel):
    __tablename__ = "kanban_boards"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    icon = db.Column(db.String(50), default="clipboard-list")
    owner_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    is_public = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    columns = db.relationship(
        "KanbanColumn",
        back_populates="board",
        cascade="all, delete-orphan",
        order_by="[KanbanColumn.position, KanbanColumn.id]",
    )
    owner = db.relationship("User")

    def to_dict(self):
        from app.services.icons import resolve_icon

        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "icon": resolve_icon(self.icon).value,
            "owner_user_id": self.owner_user_id,
            "owner_name": self.owner.full_name if self.owner else None,
            "is_public": self.is_public,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class KanbanColumn(TenantModel):
    __tablename__ = "kanban_columns"

    id = db.Column(db.Integer, primary_key=True)
    board_id = db.Column(
        db.Integer, db.ForeignKey("kanban_boards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = db.Column(db.String(200), nullable=False)
    color = db.Column(db.String(20), default="#64748b")
    position = db.Column(db.Integer, default=0)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    board = db.relationship("KanbanBoard", back_populates="columns")
    cards = db.relationship(
        "KanbanCard",
        back_populates="column",
        cascade="all, delete-orphan",
        order_by="[KanbanCard.position, KanbanCard.id]",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "board_id": self.board_id,
            "title": self.title,
            "color": self.color,
            "position": self.position,
            "created_at": iso(self.created_at),
        }


class KanbanCard(TenantModel):
    __tablename__ = "kanban_cards"

    id = db.Column(db.Integer, primary_key=True)
    column_id = db.Column(
        db.Integer, db.ForeignKey("kanban_columns.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    icon = db.Column(db.String(50))
    position = db.Column(db.Integer, default=0)
    priority_level = db.Column(db.String(20), default="medium")
    completed = db.Column(db.Boolean, default=False)
    comments_enabled = db.Column(db.Boolean, default=True)
    labels = db.Column(db.JSON, default=list)
    due_date = db.Column(db.Date)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    column = db.relationship("KanbanColumn", back_populates="cards")
    comments = db.relationship(
        "KanbanCardComment",
        back_populates="card",
        cascade="all, delete-orphan",
        order_by="KanbanCardComment.created_at",
    )
    attachments = db.relationship(
        "KanbanCardAttachment",
        back_populates="card",
        cascade="all, delete-orphan",
        order_by="KanbanCardAttachment.created_at",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "column_id": self.column_id,
            "title": self.title,
            "description": self.description,
            "icon": self.icon,
            "position": self.position,
            "priority_level": self.priority_level,
            "completed": self.completed,
            "comments_enabled": self.comments_enabled,
            "labels": list(self.labels or []),
            "due_date": iso(self.due_date),
            "created_by_user_id": self.created_by_user_id,
            "comment_count": len(self.comments),
            "attachment_count": len(self.attachments),
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }


class KanbanCardComment(TenantModel):
    __tablename__ = "kanban_card_comments"

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(
        db.Integer, db.ForeignKey("kanban_cards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    card = db.relationship("KanbanCard", back_populates="comments")
    user = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "card_id": self.card_id,
            "user_id": self.user_id,
            "user_name": self.user.full_name if self.user else None,
            "content": self.content,
            "created_at": iso(self.created_at),
        }


class KanbanCardAttachment(TenantModel):
    __tablename__ = "kanban_card_attachments"

    id = db.Column(db.Integer, primary_key=True)
    card_id = db.Column(
        db.Integer, db.ForeignKey("kanban_cards.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"))
    original_name = db.Column(db.String(255), nullable=False)
    stored_name = db.Column(db.String(255), nullable=False, unique=True)
    mime_type = db.Column(db.String(100), nullable=False)
    size = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    card = db.relationship("KanbanCard", back_populates="attachments")

    def to_dict(self):
        return {
            "id": self.id,
            "card_id": self.card_id,
            "user_id": self.user_id,
            "original_name": self.original_name,
            "mime_type": self.mime_type,
            "size": self.size,
            "created_at": iso(self.created_at),
        }
