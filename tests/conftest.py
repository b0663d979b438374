#!/usr/bin/env python3
# CUI // SP-PROPIN
"""Shared test fixtures for the TradeDesk test suite."""

import importlib
import os
import sqlite3
import sys
from pathlib import Path

import pytest

# Add project root to path
BASE_DIR = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(BASE_DIR))


def _patch_db_path(db_path):
    """Patch DB_PATH in all tool modules that cache it at import time."""
    p = Path(db_path)
    modules_to_patch = [
        "tradedesk.db.init_db",
        "tradedesk.audit.audit_logger",
        "tradedesk.documents.document_store",
        "tradedesk.crosscheck.gate_engine",
        "tradedesk.monitor.pipeline_manager",
        "tradedesk.crm.buyer_manager",
        "tradedesk.dashboard.app",
    ]
    for mod_name in modules_to_patch:
        mod = importlib.import_module(mod_name)
        if hasattr(mod, "DB_PATH"):
            mod.DB_PATH = p


@pytest.fixture
def tmp_db(tmp_path):
    """Create a temporary TradeDesk database with full schema."""
    db_path = tmp_path / "test_tradedesk.db"

    from tradedesk.db.init_db import init_db
    init_db(str(db_path))

    os.environ["TRADEDESK_DB_PATH"] = str(db_path)
    _patch_db_path(db_path)
    yield db_path
    if "TRADEDESK_DB_PATH" in os.environ:
        del os.environ["TRADEDESK_DB_PATH"]


@pytest.fixture
def db_conn(tmp_db):
    """Get a connection to the test database."""
    conn = sqlite3.connect(str(tmp_db))
    conn.row_factory = sqlite3.Row
    yield conn
    conn.close()


@pytest.fixture
def sample_buyer(tmp_db):
    """Insert a sample buyer and return its ID."""
    from tradedesk.crm.buyer_manager import add_buyer
    result = add_buyer("Glow Imports LLC", "us",
                       contact_name="Dana Whitfield",
                       contact_email="dana@glowimports.example",
                       buyer_type="importer")
    assert result["status"] == "success"
    return result["id"]


@pytest.fixture
def sample_project(tmp_db, sample_buyer):
    """Create a US export project at first_proposal and return its ID."""
    from tradedesk.monitor.pipeline_manager import create_project
    result = create_project("US Serum Order", buyer_id=sample_buyer,
                            target_countries=["US"])
    assert result["status"] == "success"
    return result["project_id"]


@pytest.fixture
def bulk_documents(sample_project):
    """A consistent bulk-order document set with a cleared compliance snapshot.

    Returns {doc_key: document dict} of the current instances.
    """
    from tradedesk.documents import models as docs
    from tradedesk.documents.doc_templates import DOC_KEYS_BY_PRESET
    from tradedesk.documents.document_store import (
        create_document, update_document_fields,
    )

    created = {}
    keys = [docs.DOC_COMPLIANCE_SNAPSHOT, docs.DOC_SAMPLE_PI]
    keys += DOC_KEYS_BY_PRESET["bulk_order"]
    for key in keys:
        result = create_document(sample_project, key)
        assert result["status"] == "success"
        created[key] = result["document"]

    snapshot = created[docs.DOC_COMPLIANCE_SNAPSHOT]
    cleared = [
        {"country": rp["country"],
         "items": [dict(item, status="pass") for item in rp["items"]]}
        for rp in snapshot["fields"]["rulepacks"]
    ]
    result = update_document_fields(snapshot["id"], {"rulepacks": cleared})
    assert result["status"] == "success"
    return created


@pytest.fixture
def client(tmp_db):
    """Flask test client with API-key auth disabled."""
    from tradedesk.dashboard import app as app_module
    saved_key = app_module._API_KEY
    app_module._API_KEY = ""
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as test_client:
        yield test_client
    app_module._API_KEY = saved_key
