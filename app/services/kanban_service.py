"""
Kanban Service — boards, columns, cards, comments and attachments.

Visibility:
    a board is visible to its owner, to tenant admins, and to everyone in
    the tenant when is_public is set. Invisible boards surface as 404.
Management (board settings, columns, deleting the board):
    owner or tenant admin, otherwise PermissionDeniedError (403).
Cards, comments and attachments:
    anyone who can see the board may add them; the author, the board
    owner or an admin may delete them.

Card positions are dense (0..n-1) per column and are re-indexed on every
create, move and delete.
"""

import logging

from sqlalchemy import or_

from app.core.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from app.models import db
from app.models.kanban import (
    CARD_PRIORITIES,
    KanbanBoard,
    KanbanCard,
    KanbanCardAttachment,
    KanbanCardComment,
    KanbanColumn,
)
from app.services import upload_service
from app.services.form_composer import RequestContext
from app.services.helpers.scoped_queries import get_scoped
from app.services.icons import validate_icon
from app.utils.helpers import bool_field, parse_date

logger = logging.getLogger(__name__)


def _require_text(data: dict, key: str, max_len: int = 200) -> str:
    value = (data.get(key) or "").strip()
    if not value:
        raise ValidationError(f"{key} is required", details={key: "required"})
    if len(value) > max_len:
        raise ValidationError(f"{key} is too long", details={key: f"max {max_len} characters"})
    return value


def _int_field(data: dict, key: str, default: int = 0) -> int:
    value = data.get(key)
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be an integer", details={key: "integer"}) from exc


# ── Access ───────────────────────────────────────────────────────────────


def can_view(board: KanbanBoard, ctx: RequestContext) -> bool:
    return board.is_public or board.owner_user_id == ctx.user_id or ctx.is_admin


def can_manage(board: KanbanBoard, ctx: RequestContext) -> bool:
    return board.owner_user_id == ctx.user_id or ctx.is_admin


def _visible_board(ctx: RequestContext, board_id: int) -> KanbanBoard:
    board = get_scoped(KanbanBoard, board_id, tenant_id=ctx.tenant_id)
    if not can_view(board, ctx):
        raise NotFoundError("KanbanBoard", board_id, ctx.tenant_id)
    return board


def _managed_board(ctx: RequestContext, board_id: int) -> KanbanBoard:
    board = _visible_board(ctx, board_id)
    if not can_manage(board, ctx):
        raise PermissionDeniedError("Only the board owner or an admin can change this board")
    return board


def _visible_column(ctx: RequestContext, column_id: int) -> KanbanColumn:
    column = get_scoped(KanbanColumn, column_id, tenant_id=ctx.tenant_id)
    _visible_board(ctx, column.board_id)
    return column


def _visible_card(ctx: RequestContext, card_id: int) -> KanbanCard:
    card = get_scoped(KanbanCard, card_id, tenant_id=ctx.tenant_id)
    _visible_board(ctx, card.column.board_id)
    return card


def _may_delete(ctx: RequestContext, board: KanbanBoard, author_id) -> bool:
    return author_id == ctx.user_id or can_manage(board, ctx)


# ═══════════════════════════════════════════════════════════════
# Boards
# ═══════════════════════════════════════════════════════════════
def list_boards(ctx: RequestContext) -> list[KanbanBoard]:
    q = KanbanBoard.query_for_tenant(ctx.tenant_id)
    if not ctx.is_admin:
        q = q.filter(or_(KanbanBoard.is_public.is_(True), KanbanBoard.owner_user_id == ctx.user_id))
    return q.order_by(KanbanBoard.name, KanbanBoard.id).all()


def get_board(ctx: RequestContext, board_id: int) -> KanbanBoard:
    return _visible_board(ctx, board_id)


def create_board(ctx: RequestContext, data: dict) -> KanbanBoard:
    board = KanbanBoard(
        tenant_id=ctx.tenant_id,
        name=_require_text(data, "name"),
        description=data.get("description") or "",
        icon=validate_icon(data.get("icon")) or "clipboard-list",
        owner_user_id=ctx.user_id,
        is_public=bool_field(data.get("is_public")),
    )
    db.session.add(board)
    db.session.commit()
    logger.info("Kanban board created id=%s owner=%s", board.id, ctx.user_id)
    return board


def update_board(ctx: RequestContext, board_id: int, data: dict) -> KanbanBoard:
    board = _managed_board(ctx, board_id)
    if "name" in data:
        board.name = _require_text(data, "name")
    if "description" in data:
        board.description = data.get("description") or ""
    if "icon" in data:
        board.icon = validate_icon(data.get("icon")) or "clipboard-list"
    if "is_public" in data:
        board.is_public = bool_field(data["is_public"])
    db.session.commit()
    return board


def delete_board(ctx: RequestContext, board_id: int) -> None:
    board = _managed_board(ctx, board_id)
    stored = [a.stored_name for col in board.columns for card in col.cards for a in card.attachments]
    db.session.delete(board)
    db.session.commit()
    for name in stored:
        upload_service.remove_stored(name)
    logger.info("Kanban board deleted id=%s", board_id)


# ═══════════════════════════════════════════════════════════════
# Columns
# ═══════════════════════════════════════════════════════════════
def list_columns(ctx: RequestContext, board_id: int) -> list[KanbanColumn]:
    return list(_visible_board(ctx, board_id).columns)


def create_column(ctx: RequestContext, board_id: int, data: dict) -> KanbanColumn:
    board = _managed_board(ctx, board_id)
    column = KanbanColumn(
        tenant_id=ctx.tenant_id,
        board_id=board.id,
        title=_require_text(data, "title"),
        color=data.get("color") or "#64748b",
        position=_int_field(data, "position", default=len(board.columns)),
    )
    db.session.add(column)
    db.session.commit()
    return column


def update_column(ctx: RequestContext, column_id: int, data: dict) -> KanbanColumn:
    column = get_scoped(KanbanColumn, column_id, tenant_id=ctx.tenant_id)
    _managed_board(ctx, column.board_id)
    if "title" in data:
        column.title = _require_text(data, "title")
    if "color" in data:
        column.color = data.get("color") or "#64748b"
    if "position" in data:
        column.position = _int_field(data, "position")
    db.session.commit()
    return column


def delete_column(ctx: RequestContext, column_id: int) -> None:
    column = get_scoped(KanbanColumn, column_id, tenant_id=ctx.tenant_id)
    _managed_board(ctx, column.board_id)
    stored = [a.stored_name for card in column.cards for a in card.attachments]
    db.session.delete(column)
    db.session.commit()
    for name in stored:
        upload_service.remove_stored(name)


# ═══════════════════════════════════════════════════════════════
# Cards
# ═══════════════════════════════════════════════════════════════
def _reindex(cards) -> None:
    for index, card in enumerate(cards):
        card.position = index


def _labels(value) -> list[str]:
    if value in (None, ""):
        return []
    if not isinstance(value, list):
        raise ValidationError("labels must be a list", details={"labels": "list of strings"})
    return [str(v).strip() for v in value if str(v).strip()]


def _priority(value) -> str:
    value = value or "medium"
    if value not in CARD_PRIORITIES:
        raise ValidationError(
            f"Invalid priority_level '{value}'",
            details={"priority_level": f"one of {', '.join(CARD_PRIORITIES)}"},
        )
    return value


def _due_date(value):
    if value in (None, ""):
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise ValidationError("due_date must be YYYY-MM-DD", details={"due_date": "invalid date"})
    return parsed


def list_board_cards(ctx: RequestContext, board_id: int) -> list[KanbanCard]:
    board = _visible_board(ctx, board_id)
    return [card for column in board.columns for card in column.cards]


def list_column_cards(ctx: RequestContext, column_id: int) -> list[KanbanCard]:
    return list(_visible_column(ctx, column_id).cards)


def create_card(ctx: RequestContext, data: dict) -> KanbanCard:
    try:
        column_id = int(data.get("column_id"))
    except (TypeError, ValueError) as exc:
        raise ValidationError("column_id is required", details={"column_id": "required"}) from exc
    column = _visible_column(ctx, column_id)
    card = KanbanCard(
        tenant_id=ctx.tenant_id,
        column_id=column.id,
        title=_require_text(data, "title", 300),
        description=data.get("description") or "",
        icon=validate_icon(data.get("icon")),
        priority_level=_priority(data.get("priority_level")),
        completed=bool_field(data.get("completed")),
        comments_enabled=bool_field(data.get("comments_enabled"), default=True),
        labels=_labels(data.get("labels")),
        due_date=_due_date(data.get("due_date")),
        created_by_user_id=ctx.user_id,
        position=len(column.cards),
    )
    db.session.add(card)
    db.session.commit()
    return card


def update_card(ctx: RequestContext, card_id: int, data: dict) -> KanbanCard:
    card = _visible_card(ctx, card_id)
    if "title" in data:
        card.title = _require_text(data, "title", 300)
    if "description" in data:
        card.description = data.get("description") or ""
    if "icon" in data:
        card.icon = validate_icon(data.get("icon"))
    if "priority_level" in data:
        card.priority_level = _priority(data.get("priority_level"))
    for flag in ("completed", "comments_enabled"):
        if flag in data:
            setattr(card, flag, bool_field(data[flag]))
    if "labels" in data:
        card.labels = _labels(data.get("labels"))
    if "due_date" in data:
        card.due_date = _due_date(data.get("due_date"))
    db.session.commit()
    return card


def move_card(ctx: RequestContext, card_id: int, data: dict) -> KanbanCard:
    """Move a card to (column_id, position) on the same board; both columns are re-indexed."""
    card = _visible_card(ctx, card_id)
    source = card.column
    try:
        target_id = int(data.get("column_id", source.id))
        position = int(data.get("position", 0))
    except (TypeError, ValueError) as exc:
        raise ValidationError("column_id and position must be integers",
                              details={"position": "integer"}) from exc

    target = get_scoped(KanbanColumn, target_id, tenant_id=ctx.tenant_id)
    if target.board_id != source.board_id:
        raise ValidationError("Cards can only move within their board", details={"column_id": "other board"})

    if target.id != source.id:
        card.column = target
        _reindex([c for c in source.cards if c.id != card.id])
    destination = [c for c in target.cards if c.id != card.id]
    position = max(0, min(position, len(destination)))
    destination.insert(position, card)
    _reindex(destination)
    db.session.commit()
    db.session.refresh(card)
    return card


def delete_card(ctx: RequestContext, card_id: int) -> None:
    card = _visible_card(ctx, card_id)
    column = card.column
    if not _may_delete(ctx, column.board, card.created_by_user_id):
        raise PermissionDeniedError("Only the card creator, board owner or an admin can delete a card")
    stored = [a.stored_name for a in card.attachments]
    db.session.delete(card)
    db.session.flush()
    _reindex([c for c in column.cards if c.id != card_id])
    db.session.commit()
    for name in stored:
        upload_service.remove_stored(name)


# ═══════════════════════════════════════════════════════════════
# Comments
# ═══════════════════════════════════════════════════════════════
def list_comments(ctx: RequestContext, card_id: int) -> list[KanbanCardComment]:
    return list(_visible_card(ctx, card_id).comments)


def add_comment(ctx: RequestContext, card_id: int, data: dict) -> KanbanCardComment:
    card = _visible_card(ctx, card_id)
    if not card.comments_enabled:
        raise ValidationError("Comments are disabled for this card", details={"comments_enabled": False})
    comment = KanbanCardComment(
        tenant_id=ctx.tenant_id,
        card_id=card.id,
        user_id=ctx.user_id,
        content=_require_text(data, "content", 5000),
    )
    db.session.add(comment)
    db.session.commit()
    return comment


def delete_comment(ctx: RequestContext, comment_id: int) -> None:
    comment = get_scoped(KanbanCardComment, comment_id, tenant_id=ctx.tenant_id)
    card = _visible_card(ctx, comment.card_id)
    if not _may_delete(ctx, card.column.board, comment.user_id):
        raise PermissionDeniedError("Only the author, board owner or an admin can delete a comment")
    db.session.delete(comment)
    db.session.commit()


# ═══════════════════════════════════════════════════════════════
# Attachments
# ═══════════════════════════════════════════════════════════════
def list_attachments(ctx: RequestContext, card_id: int) -> list[KanbanCardAttachment]:
    return list(_visible_card(ctx, card_id).attachments)


def add_attachments(ctx: RequestContext, card_id: int, parts) -> list[KanbanCardAttachment]:
    """Validate every part first, then store and record them in one commit."""
    card = _visible_card(ctx, card_id)
    checked = upload_service.check_files(parts)
    created = []
    written = []
    try:
        for part, original, mime_type, size in checked:
            stored = upload_service.store_file(part, original, mime_type, size)
            written.append(stored.stored_name)
            attachment = KanbanCardAttachment(
                tenant_id=ctx.tenant_id,
                card_id=card.id,
                user_id=ctx.user_id,
                original_name=stored.original_name,
                stored_name=stored.stored_name,
                mime_type=stored.mime_type,
                size=stored.size,
            )
            db.session.add(attachment)
            created.append(attachment)
        db.session.commit()
    except Exception:
        db.session.rollback()
        for name in written:
            upload_service.remove_stored(name)
        logger.warning("Attachment upload failed card=%s; removed %d stored file(s)", card_id, len(written))
        raise
    return created


def get_attachment(ctx: RequestContext, attachment_id: int) -> KanbanCardAttachment:
    attachment = get_scoped(KanbanCardAttachment, attachment_id, tenant_id=ctx.tenant_id)
    _visible_card(ctx, attachment.card_id)
    return attachment


def delete_attachment(ctx: RequestContext, attachment_id: int) -> None:
    attachment = get_attachment(ctx, attachment_id)
    if not _may_delete(ctx, attachment.card.column.board, attachment.user_id):
        raise PermissionDeniedError("Only the uploader, board owner or an admin can delete an attachment")
    stored_name = attachment.stored_name
    db.session.delete(attachment)
    db.session.commit()
    upload_service.remove_stored(stored_name)
