"""
Kanban module tests — boards, columns, cards, comments and attachments.

Tests cover:
  - Board visibility (private boards are 404 to other users, public boards readable)
  - Management rights (owner or admin)
  - Dense card positions across create / move / delete
  - Cross-board moves rejected
  - Comments honour comments_enabled
  - Attachment upload limits (415 / 413 / file count), download and delete
"""

import io
import os

import pytest

from app.models import db
from app.models.kanban import KanbanCardAttachment


def _board(client, headers, **extra):
    res = client.post("/api/kanban/boards", json={"name": "Maintenance", **extra}, headers=headers)
    assert res.status_code == 201
    return res.get_json()


def _column(client, headers, board_id, title):
    res = client.post(f"/api/kanban/boards/{board_id}/columns", json={"title": title}, headers=headers)
    assert res.status_code == 201
    return res.get_json()


def _card(client, headers, column_id, title, **extra):
    res = client.post("/api/kanban/cards", json={"column_id": column_id, "title": title, **extra}, headers=headers)
    assert res.status_code == 201
    return res.get_json()


def _titles(client, headers, column_id):
    cards = client.get(f"/api/kanban/columns/{column_id}/cards", headers=headers).get_json()
    return [(c["title"], c["position"]) for c in cards]


@pytest.fixture()
def board(client, operator_headers):
    """Operator-owned private board with columns Todo / Done and cards A, B, C in Todo."""
    b = _board(client, operator_headers)
    todo = _column(client, operator_headers, b["id"], "Todo")
    done = _column(client, operator_headers, b["id"], "Done")
    cards = [_card(client, operator_headers, todo["id"], t) for t in ("A", "B", "C")]
    return {"board": b, "todo": todo, "done": done, "cards": cards}


# ═══════════════════════════════════════════════════════════════
# Boards & columns
# ═══════════════════════════════════════════════════════════════

class TestBoards:
    def test_private_board_hidden(self, client, tenant, auth_headers, admin_headers, board):
        from app.services.user_service import create_user

        board_id = board["board"]["id"]
        colleague = auth_headers(create_user(tenant.id, "c@acme.test", "colleague-pass"))
        assert client.get(f"/api/kanban/boards/{board_id}", headers=colleague).status_code == 404
        assert client.get("/api/kanban/boards", headers=colleague).get_json() == []
        # Admins see every board
        assert client.get(f"/api/kanban/boards/{board_id}", headers=admin_headers).status_code == 200

    def test_public_board_readable_not_manageable(self, client, admin_headers, operator_headers):
        b = _board(client, admin_headers, is_public=True)
        res = client.get(f"/api/kanban/boards/{b['id']}", headers=operator_headers)
        assert res.status_code == 200
        assert res.get_json()["can_manage"] is False
        res = client.patch(f"/api/kanban/boards/{b['id']}", json={"name": "Mine"}, headers=operator_headers)
        assert res.status_code == 403
        res = client.post(f"/api/kanban/boards/{b['id']}/columns", json={"title": "X"}, headers=operator_headers)
        assert res.status_code == 403

    def test_board_detail_nests_columns_and_cards(self, client, operator_headers, board):
        body = client.get(f"/api/kanban/boards/{board['board']['id']}", headers=operator_headers).get_json()
        assert [c["title"] for c in body["columns"]] == ["Todo", "Done"]
        assert [c["title"] for c in body["columns"][0]["cards"]] == ["A", "B", "C"]
        assert body["can_manage"] is True

    def test_board_icon_validated(self, client, operator_headers):
        res = client.post("/api/kanban/boards", json={"name": "X", "icon": "unicorn"}, headers=operator_headers)
        assert res.status_code == 422

    def test_delete_board_cascades(self, client, operator_headers, board):
        board_id = board["board"]["id"]
        assert client.delete(f"/api/kanban/boards/{board_id}", headers=operator_headers).status_code == 200
        assert client.get(f"/api/kanban/columns/{board['todo']['id']}/cards",
                          headers=operator_headers).status_code == 404

    @pytest.mark.parametrize("position", ["first", [1]])
    def test_column_position_must_be_integer(self, client, operator_headers, board, position):
        board_id = board["board"]["id"]
        res = client.post(f"/api/kanban/boards/{board_id}/columns", json={"title": "X", "position": position},
                          headers=operator_headers)
        assert res.status_code == 422
        res = client.patch(f"/api/kanban/columns/{board['done']['id']}", json={"position": position},
                           headers=operator_headers)
        assert res.status_code == 422

    def test_column_update(self, client, operator_headers, board):
        res = client.patch(f"/api/kanban/columns/{board['done']['id']}", json={"title": "Finished"},
                           headers=operator_headers)
        assert res.get_json()["title"] == "Finished"


# ═══════════════════════════════════════════════════════════════
# Cards
# ═══════════════════════════════════════════════════════════════

class TestCards:
    def test_positions_dense_on_create(self, client, operator_headers, board):
        assert _titles(client, operator_headers, board["todo"]["id"]) == [("A", 0), ("B", 1), ("C", 2)]

    def test_move_within_column(self, client, operator_headers, board):
        card_c = board["cards"][2]
        res = client.post(f"/api/kanban/cards/{card_c['id']}/move",
                          json={"column_id": board["todo"]["id"], "position": 0}, headers=operator_headers)
        assert res.status_code == 200
        assert _titles(client, operator_headers, board["todo"]["id"]) == [("C", 0), ("A", 1), ("B", 2)]

    def test_move_across_columns_reindexes_both(self, client, operator_headers, board):
        card_a = board["cards"][0]
        res = client.post(f"/api/kanban/cards/{card_a['id']}/move",
                          json={"column_id": board["done"]["id"], "position": 5}, headers=operator_headers)
        assert res.get_json()["column_id"] == board["done"]["id"]
        assert _titles(client, operator_headers, board["todo"]["id"]) == [("B", 0), ("C", 1)]
        assert _titles(client, operator_headers, board["done"]["id"]) == [("A", 0)]

    def test_move_to_other_board_rejected(self, client, operator_headers, board):
        other = _board(client, operator_headers, name="Other")
        foreign = _column(client, operator_headers, other["id"], "Elsewhere")
        res = client.post(f"/api/kanban/cards/{board['cards'][0]['id']}/move",
                          json={"column_id": foreign["id"], "position": 0}, headers=operator_headers)
        assert res.status_code == 422

    def test_delete_reindexes(self, client, operator_headers, board):
        card_b = board["cards"][1]
        assert client.delete(f"/api/kanban/cards/{card_b['id']}", headers=operator_headers).status_code == 200
        assert _titles(client, operator_headers, board["todo"]["id"]) == [("A", 0), ("C", 1)]

    def test_card_fields(self, client, operator_headers, board):
        card = _card(client, operator_headers, board["done"]["id"], "Replace belt",
                     priority_level="high", labels=["motor", " ", "urgent"], due_date="2024-05-01")
        assert card["labels"] == ["motor", "urgent"]
        assert card["due_date"] == "2024-05-01"
        res = client.patch(f"/api/kanban/cards/{card['id']}", json={"priority_level": "extreme"},
                           headers=operator_headers)
        assert res.status_code == 422

    def test_board_cards_listing(self, client, operator_headers, board):
        cards = client.get(f"/api/kanban/boards/{board['board']['id']}/cards", headers=operator_headers).get_json()
        assert len(cards) == 3


# ═══════════════════════════════════════════════════════════════
# Comments
# ═══════════════════════════════════════════════════════════════

class TestComments:
    def test_comment_flow(self, client, operator_headers, board):
        card_id = board["cards"][0]["id"]
        res = client.post(f"/api/kanban/cards/{card_id}/comments", json={"content": "On it"},
                          headers=operator_headers)
        assert res.status_code == 201
        comment = res.get_json()
        assert comment["user_name"] == "Olle Operator"
        listed = client.get(f"/api/kanban/cards/{card_id}/comments", headers=operator_headers).get_json()
        assert [c["content"] for c in listed] == ["On it"]
        res = client.delete(f"/api/kanban/cards/comments/{comment['id']}", headers=operator_headers)
        assert res.status_code == 200

    def test_comments_disabled(self, client, operator_headers, board):
        card = _card(client, operator_headers, board["todo"]["id"], "Quiet", comments_enabled=False)
        res = client.post(f"/api/kanban/cards/{card['id']}/comments", json={"content": "Hi"},
                          headers=operator_headers)
        assert res.status_code == 422


# ═══════════════════════════════════════════════════════════════
# Attachments
# ═══════════════════════════════════════════════════════════════

def _upload(client, headers, card_id, *files, field="file"):
    data = {field: [(io.BytesIO(content), name, mime) for name, content, mime in files]}
    return client.post(f"/api/kanban/cards/{card_id}/attachments", data=data,
                       headers=headers, content_type="multipart/form-data")


class TestAttachments:
    def test_upload_download_delete(self, client, app, operator_headers, board):
        card_id = board["cards"][0]["id"]
        res = _upload(client, operator_headers, card_id, ("photo.png", b"\x89PNG data", "image/png"))
        assert res.status_code == 201
        (attachment,) = res.get_json()
        assert attachment["original_name"] == "photo.png"
        assert attachment["size"] == 9

        stored = db.session.get(KanbanCardAttachment, attachment["id"]).stored_name
        path = os.path.join(app.config["UPLOAD_FOLDER"], stored)
        assert os.path.exists(path)
        assert stored != "photo.png"

        res = client.get(f"/api/kanban/attachments/{attachment['id']}/download", headers=operator_headers)
        assert res.status_code == 200
        assert res.data == b"\x89PNG data"
        assert "photo.png" in res.headers["Content-Disposition"]
        res.close()

        res = client.delete(f"/api/kanban/cards/attachments/{attachment['id']}", headers=operator_headers)
        assert res.status_code == 200
        assert not os.path.exists(path)

    def test_multiple_files(self, client, operator_headers, board):
        res = _upload(client, operator_headers, board["cards"][0]["id"],
                      ("a.jpg", b"a", "image/jpeg"), ("b.pdf", b"b", "application/pdf"), field="files")
        assert res.status_code == 201
        assert len(res.get_json()) == 2

    def test_disallowed_type_415(self, client, operator_headers, board):
        res = _upload(client, operator_headers, board["cards"][0]["id"],
                      ("tool.exe", b"MZ", "application/octet-stream"))
        assert res.status_code == 415
        assert res.get_json()["code"] == "ERR_UNSUPPORTED_MEDIA"

    def test_mismatched_mimetype_415(self, client, operator_headers, board):
        res = _upload(client, operator_headers, board["cards"][0]["id"], ("img.png", b"x", "text/html"))
        assert res.status_code == 415

    def test_too_large_413(self, client, app, monkeypatch, operator_headers, board):
        monkeypatch.setitem(app.config, "MAX_UPLOAD_SIZE", 4)
        res = _upload(client, operator_headers, board["cards"][0]["id"], ("big.png", b"0123456789", "image/png"))
        assert res.status_code == 413
        assert res.get_json()["code"] == "ERR_PAYLOAD_TOO_LARGE"

    def test_too_many_files(self, client, app, monkeypatch, operator_headers, board):
        monkeypatch.setitem(app.config, "MAX_UPLOAD_FILES", 2)
        files = [(f"{i}.png", b"x", "image/png") for i in range(3)]
        res = _upload(client, operator_headers, board["cards"][0]["id"], *files, field="files")
        assert res.status_code == 400

    def test_no_file(self, client, operator_headers, board):
        res = client.post(f"/api/kanban/cards/{board['cards'][0]['id']}/attachments", data={},
                          headers=operator_headers, content_type="multipart/form-data")
        assert res.status_code == 400

    def test_rejected_batch_stores_nothing(self, client, app, operator_headers, board):
        card_id = board["cards"][0]["id"]
        _upload(client, operator_headers, card_id,
                ("ok.png", b"x", "image/png"), ("bad.exe", b"x", "application/octet-stream"), field="files")
        listed = client.get(f"/api/kanban/cards/{card_id}/attachments", headers=operator_headers).get_json()
        assert listed == []

    def test_extension_mimetype_mismatch_415(self, client, operator_headers, board):
        res = _upload(client, operator_headers, board["cards"][0]["id"], ("img.png", b"x", "application/pdf"))
        assert res.status_code == 415

    def test_failed_store_removes_written_files(self, client, app, monkeypatch, operator_headers, board):
        from app.services import upload_service

        real_store = upload_service.store_file
        calls = []

        def store_then_fail(*args):
            calls.append(args)
            if len(calls) == 2:
                raise OSError("disk full")
            return real_store(*args)

        monkeypatch.setattr(upload_service, "store_file", store_then_fail)
        folder = app.config["UPLOAD_FOLDER"]
        before = set(os.listdir(folder))

        card_id = board["cards"][0]["id"]
        res = _upload(client, operator_headers, card_id,
                      ("a.png", b"a", "image/png"), ("b.png", b"b", "image/png"), field="files")
        assert res.status_code == 500
        assert set(os.listdir(folder)) == before
        listed = client.get(f"/api/kanban/cards/{card_id}/attachments", headers=operator_headers).get_json()
        assert listed == []
