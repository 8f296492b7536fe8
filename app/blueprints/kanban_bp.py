"""
Kanban Blueprint.

  GET/POST            /api/kanban/boards
  GET/PATCH/DELETE    /api/kanban/boards/<id>
  GET/POST            /api/kanban/boards/<id>/columns
  PATCH/DELETE        /api/kanban/columns/<id>
  GET                 /api/kanban/boards/<id>/cards
  GET                 /api/kanban/columns/<id>/cards
  POST                /api/kanban/cards
  PATCH/DELETE        /api/kanban/cards/<id>
  POST                /api/kanban/cards/<id>/move
  GET/POST            /api/kanban/cards/<id>/comments
  DELETE              /api/kanban/cards/comments/<id>
  GET/POST            /api/kanban/cards/<id>/attachments   (multipart: file / files)
  GET                 /api/kanban/attachments/<id>/download
  DELETE              /api/kanban/cards/attachments/<id>

Module guard: tenant module "kanban".
"""

import logging

from flask import Blueprint, jsonify, request, send_file

from app.services import kanban_service as svc
from app.services import upload_service

from . import json_body, register_error_handlers, request_context

logger = logging.getLogger(__name__)

kanban_bp = Blueprint("kanban", __name__, url_prefix="/api/kanban")
register_error_handlers(kanban_bp)


# ═══════════════════════════════════════════════════════════════
# Boards
# ═══════════════════════════════════════════════════════════════
@kanban_bp.route("/boards", methods=["GET"])
def list_boards():
    return jsonify([b.to_dict() for b in svc.list_boards(request_context())]), 200


@kanban_bp.route("/boards", methods=["POST"])
def create_board():
    board = svc.create_board(request_context(), json_body())
    return jsonify(board.to_dict()), 201


@kanban_bp.route("/boards/<int:board_id>", methods=["GET"])
def get_board(board_id):
    ctx = request_context()
    board = svc.get_board(ctx, board_id)
    data = board.to_dict()
    data["columns"] = [
        dict(col.to_dict(), cards=[c.to_dict() for c in col.cards]) for col in board.columns
    ]
    data["can_manage"] = svc.can_manage(board, ctx)
    return jsonify(data), 200


@kanban_bp.route("/boards/<int:board_id>", methods=["PATCH"])
def update_board(board_id):
    board = svc.update_board(request_context(), board_id, json_body())
    return jsonify(board.to_dict()), 200


@kanban_bp.route("/boards/<int:board_id>", methods=["DELETE"])
def delete_board(board_id):
    svc.delete_board(request_context(), board_id)
    return jsonify({"message": "Board deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Columns
# ═══════════════════════════════════════════════════════════════
@kanban_bp.route("/boards/<int:board_id>/columns", methods=["GET"])
def list_columns(board_id):
    return jsonify([c.to_dict() for c in svc.list_columns(request_context(), board_id)]), 200


@kanban_bp.route("/boards/<int:board_id>/columns", methods=["POST"])
def create_column(board_id):
    column = svc.create_column(request_context(), board_id, json_body())
    return jsonify(column.to_dict()), 201


@kanban_bp.route("/columns/<int:column_id>", methods=["PATCH"])
def update_column(column_id):
    column = svc.update_column(request_context(), column_id, json_body())
    return jsonify(column.to_dict()), 200


@kanban_bp.route("/columns/<int:column_id>", methods=["DELETE"])
def delete_column(column_id):
    svc.delete_column(request_context(), column_id)
    return jsonify({"message": "Column deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Cards
# ═══════════════════════════════════════════════════════════════
@kanban_bp.route("/boards/<int:board_id>/cards", methods=["GET"])
def list_board_cards(board_id):
    return jsonify([c.to_dict() for c in svc.list_board_cards(request_context(), board_id)]), 200


@kanban_bp.route("/columns/<int:column_id>/cards", methods=["GET"])
def list_column_cards(column_id):
    return jsonify([c.to_dict() for c in svc.list_column_cards(request_context(), column_id)]), 200


@kanban_bp.route("/cards", methods=["POST"])
def create_card():
    card = svc.create_card(request_context(), json_body())
    return jsonify(card.to_dict()), 201


@kanban_bp.route("/cards/<int:card_id>", methods=["PATCH"])
def update_card(card_id):
    card = svc.update_card(request_context(), card_id, json_body())
    return jsonify(card.to_dict()), 200


@kanban_bp.route("/cards/<int:card_id>", methods=["DELETE"])
def delete_card(card_id):
    svc.delete_card(request_context(), card_id)
    return jsonify({"message": "Card deleted"}), 200


@kanban_bp.route("/cards/<int:card_id>/move", methods=["POST"])
def move_card(card_id):
    """Body: { column_id, position }"""
    card = svc.move_card(request_context(), card_id, json_body())
    return jsonify(card.to_dict()), 200


# ═══════════════════════════════════════════════════════════════
# Comments
# ═══════════════════════════════════════════════════════════════
@kanban_bp.route("/cards/<int:card_id>/comments", methods=["GET"])
def list_comments(card_id):
    return jsonify([c.to_dict() for c in svc.list_comments(request_context(), card_id)]), 200


@kanban_bp.route("/cards/<int:card_id>/comments", methods=["POST"])
def add_comment(card_id):
    comment = svc.add_comment(request_context(), card_id, json_body())
    return jsonify(comment.to_dict()), 201


@kanban_bp.route("/cards/comments/<int:comment_id>", methods=["DELETE"])
def delete_comment(comment_id):
    svc.delete_comment(request_context(), comment_id)
    return jsonify({"message": "Comment deleted"}), 200


# ═══════════════════════════════════════════════════════════════
# Attachments
# ═══════════════════════════════════════════════════════════════
@kanban_bp.route("/cards/<int:card_id>/attachments", methods=["GET"])
def list_attachments(card_id):
    return jsonify([a.to_dict() for a in svc.list_attachments(request_context(), card_id)]), 200


@kanban_bp.route("/cards/<int:card_id>/attachments", methods=["POST"])
def upload_attachments(card_id):
    parts = upload_service.collect_files(request.files)
    created = svc.add_attachments(request_context(), card_id, parts)
    return jsonify([a.to_dict() for a in created]), 201


@kanban_bp.route("/attachments/<int:attachment_id>/download", methods=["GET"])
def download_attachment(attachment_id):
    attachment = svc.get_attachment(request_context(), attachment_id)
    return send_file(
        upload_service.stored_path(attachment.stored_name),
        mimetype=attachment.mime_type,
        as_attachment=True,
        download_name=attachment.original_name,
    )


@kanban_bp.route("/cards/attachments/<int:attachment_id>", methods=["DELETE"])
def delete_attachment(attachment_id):
    svc.delete_attachment(request_context(), attachment_id)
    return jsonify({"message": "Attachment deleted"}), 200
