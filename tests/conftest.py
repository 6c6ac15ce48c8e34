"""
Shared pytest fixtures for the Boardflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - workspace / board: a workspace with owner, finance and member users
      and a board with status, amount, due date and people columns
"""

import pytest

from boardflow import create_app
from boardflow.models import db as _db
from boardflow.models.board import Board, BoardColumn, Cell, Item, Workspace, WorkspaceMember
from boardflow.services import workflow_evaluator


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Board ids are reused after each recreate; drop cached workflow configs.
        workflow_evaluator.invalidate_cache()
        yield
        workflow_evaluator.invalidate_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


def make_workspace(name="Finance Ops", members=None):
    ws = Workspace(name=name)
    _db.session.add(ws)
    _db.session.flush()
    for user_id, role in (members or {}).items():
        _db.session.add(WorkspaceMember(workspace_id=ws.id, user_id=user_id, role=role))
    _db.session.commit()
    return ws


def make_board(workspace, name="Invoices", columns=None):
    board = Board(workspace_id=workspace.id, name=name, settings={})
    _db.session.add(board)
    _db.session.flush()
    for position, (col_name, col_type) in enumerate(columns or []):
        _db.session.add(BoardColumn(board_id=board.id, name=col_name, type=col_type, position=position))
    _db.session.commit()
    return board


def column(board, name):
    return BoardColumn.query.filter_by(board_id=board.id, name=name).one()


def make_item(board, name="Invoice #1", status="Draft", created_by="creator", cells=None):
    item = Item(board_id=board.id, name=name, status=status, created_by=created_by)
    _db.session.add(item)
    _db.session.flush()
    for col_name, value in (cells or {}).items():
        _db.session.add(Cell(item_id=item.id, column_id=column(board, col_name).id, value=value))
    _db.session.commit()
    return item


DEFAULT_MEMBERS = {
    "owner": "owner",
    "admin": "admin",
    "finance": "finance",
    "creator": "member",
    "A": "member",
    "B": "member",
    "C": "member",
    "D": "member",
    "E": "member",
}

DEFAULT_COLUMNS = [
    ("Total", "number"),
    ("Due Date", "date"),
    ("Owner", "people"),
    ("Notes", "text"),
]


@pytest.fixture()
def workspace():
    return make_workspace(members=DEFAULT_MEMBERS)


@pytest.fixture()
def board(workspace):
    return make_board(workspace, columns=DEFAULT_COLUMNS)
