#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN
# Distribution: D
# POC: TradeDesk System Administrator
"""TradeDesk API — Flask JSON service over projects, documents, gate and CRM.

Endpoints:
    /api/health                               — Health check
    /api/projects                             — List (GET) / create (POST) projects
    /api/projects/<id>                        — Project detail with stage history
    /api/projects/<id>/documents              — List (GET) / create (POST) documents
    /api/documents/<id>                       — Get (GET) / edit or finalize (PATCH)
    /api/documents/<id>/versions              — Version history
    /api/documents/<id>/restore               — Restore a version (POST)
    /api/projects/<id>/gate                   — Run cross-check gate (POST)
    /api/projects/<id>/gate/history           — Prior gate runs
    /api/projects/<id>/crosscheck             — Cross-document warnings
    /api/projects/<id>/crosscheck/unify       — Unify a field across documents (POST)
    /api/projects/<id>/advance                — Advance pipeline stage (POST)
    /api/pipeline/status                      — Pipeline overview
    /api/buyers                               — List (GET) / add (POST) buyers
    /api/buyers/<id>                          — Buyer detail
    /api/buyers/<id>/stage                    — Move deal stage (PATCH)
    /api/buyers/<id>/interactions             — Log interaction (POST)
    /api/assistant/<function>                 — Edge functions: chat, ocr, email, approve
    /api/audit                                — Recent audit events

Set TRADEDESK_API_KEY to require an X-Api-Key header on /api/*.

Usage:
    python tradedesk/dashboard/app.py [--port 5001] [--debug]
"""

import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from flask import Flask, jsonify, request

BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Real environment variables win over .env
_env_path = BASE_DIR / ".env"
if _env_path.exists():
    load_dotenv(_env_path, override=False)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S",
)
logger = logging.getLogger("tradedesk")

DB_PATH = Path(os.environ.get(
    "TRADEDESK_DB_PATH", str(BASE_DIR / "data" / "tradedesk.db")
))

sys.path.insert(0, str(BASE_DIR))

from tradedesk.audit.audit_logger import list_events  # noqa: E402
from tradedesk.crm import buyer_manager  # noqa: E402
from tradedesk.crosscheck import cross_document, gate_engine  # noqa: E402
from tradedesk.documents import document_store  # noqa: E402
from tradedesk.documents.doc_templates import DOC_KEYS_BY_PRESET  # noqa: E402
from tradedesk.edge import edge_client  # noqa: E402
from tradedesk.monitor import pipeline_manager  # noqa: E402

# =========================================================================
# APP SETUP
# =========================================================================
app = Flask(__name__)
app.secret_key = os.environ.get("TRADEDESK_SECRET", "dev-secret-change-in-prod")
app.json.ensure_ascii = False


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _body():
    return request.get_json(silent=True) or {}


def _respond(result, success_code=200):
    """Map a tool status dict to an HTTP response."""
    status = result.get("status")
    if status == "success":
        return jsonify(result), success_code
    if status == "blocked":
        return jsonify(result), 409
    message = str(result.get("message") or result.get("error") or "")
    code = 404 if "not found" in message.lower() else 400
    return jsonify(result), code


# =========================================================================
# ERROR HANDLERS
# =========================================================================
@app.errorhandler(404)
def not_found(e):
    return jsonify({"status": "error", "message": "Not found"}), 404


@app.errorhandler(500)
def internal_server_error(e):
    logger.error("500 Internal Server Error: %s", e)
    return jsonify({"status": "error", "message": "Internal server error"}), 500


# =========================================================================
# AUTH (before_request)
# =========================================================================
_API_KEY = os.environ.get("TRADEDESK_API_KEY", "").strip()


@app.before_request
def _before_request():
    if _API_KEY and request.path.startswith("/api/") and request.path != "/api/health":
        provided = (
            request.headers.get("X-Api-Key", "")
            or request.args.get("api_key", "")
        )
        if provided != _API_KEY:
            return jsonify({"error": "Unauthorized. Provide X-Api-Key header."}), 401


# =========================================================================
# HEALTH
# =========================================================================
@app.route("/api/health")
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "tradedesk-api",
        "db_path": str(DB_PATH),
        "db_exists": DB_PATH.exists(),
        "backend_configured": bool(edge_client.backend_url()),
        "timestamp": _now(),
    })


# =========================================================================
# PROJECTS
# =========================================================================
@app.route("/api/projects", methods=["GET"])
def api_list_projects():
    return _respond(pipeline_manager.list_projects(
        stage=request.args.get("stage"),
        buyer_id=request.args.get("buyer_id"),
    ))


@app.route("/api/projects", methods=["POST"])
def api_create_project():
    """Create a project, optionally seeding a preset's documents.

    POST body: name, buyer_id, target_countries, currency, incoterms,
    payment_terms, language, preset (first_proposal | sample | bulk_order).
    """
    body = _body()
    preset = body.get("preset")
    if preset and preset not in DOC_KEYS_BY_PRESET:
        return jsonify({"status": "error",
                        "message": f"Unknown preset: {preset}"}), 400

    result = pipeline_manager.create_project(
        body.get("name"),
        buyer_id=body.get("buyer_id"),
        target_countries=body.get("target_countries") or [],
        currency=body.get("currency") or "USD",
        incoterms=body.get("incoterms") or "FOB",
        payment_terms=body.get("payment_terms") or "T/T 30/70",
        language=body.get("language") or "en",
    )
    if result.get("status") != "success":
        return _respond(result)

    if preset:
        result["documents"] = []
        for doc_key in DOC_KEYS_BY_PRESET[preset]:
            created = document_store.create_document(
                result["project_id"], doc_key, company=body.get("company"))
            if created.get("status") == "success":
                result["documents"].append(created["document"]["id"])
    return _respond(result, 201)


@app.route("/api/projects/<project_id>")
def api_get_project(project_id):
    return _respond(pipeline_manager.get_project(project_id))


@app.route("/api/projects/<project_id>/advance", methods=["POST"])
def api_advance_project(project_id):
    body = _body()
    to_stage = body.get("to_stage")
    if not to_stage:
        return jsonify({"status": "error", "message": "to_stage is required"}), 400
    return _respond(pipeline_manager.advance_stage(
        project_id, to_stage, notes=body.get("notes")))


@app.route("/api/pipeline/status")
def api_pipeline_status():
    return _respond(pipeline_manager.pipeline_status())


# =========================================================================
# DOCUMENTS
# =========================================================================
@app.route("/api/projects/<project_id>/documents", methods=["GET"])
def api_list_documents(project_id):
    history = request.args.get("history", "").lower() in ("1", "true", "yes")
    return _respond(document_store.list_documents(
        project_id, include_history=history, status=request.args.get("status")))


@app.route("/api/projects/<project_id>/documents", methods=["POST"])
def api_create_document(project_id):
    body = _body()
    if not body.get("doc_key"):
        return jsonify({"status": "error", "message": "doc_key is required"}), 400
    return _respond(document_store.create_document(
        project_id,
        body["doc_key"],
        fields=body.get("fields"),
        context=body.get("context"),
        company=body.get("company"),
        title=body.get("title"),
    ), 201)


@app.route("/api/documents/<doc_id>", methods=["GET"])
def api_get_document(doc_id):
    return _respond(document_store.get_document(doc_id))


@app.route("/api/documents/<doc_id>", methods=["PATCH"])
def api_update_document(doc_id):
    """Merge fields into a document, or finalize it with {"finalize": true}."""
    body = _body()
    if body.get("finalize"):
        return _respond(document_store.finalize_document(doc_id))
    if "fields" not in body:
        return jsonify({"status": "error", "message": "fields is required"}), 400
    return _respond(document_store.update_document_fields(
        doc_id, body["fields"], reason=body.get("reason"), actor="api"))


@app.route("/api/documents/<doc_id>/versions")
def api_document_versions(doc_id):
    return _respond(document_store.document_versions(doc_id))


@app.route("/api/documents/<doc_id>/restore", methods=["POST"])
def api_restore_document(doc_id):
    version = _body().get("version")
    if not isinstance(version, int):
        return jsonify({"status": "error", "message": "integer version is required"}), 400
    return _respond(document_store.restore_version(doc_id, version))


# =========================================================================
# CROSS-CHECK
# =========================================================================
@app.route("/api/projects/<project_id>/gate", methods=["POST"])
def api_run_gate(project_id):
    result = gate_engine.run_project_gate(project_id, trigger="api", actor="api")
    if result.get("status") == "error" and result.get("run_id"):
        # Evaluation error: the run is recorded as failed
        return jsonify(result), 422
    return _respond(result)


@app.route("/api/projects/<project_id>/gate/history")
def api_gate_history(project_id):
    limit = request.args.get("limit", 20, type=int)
    return _respond(gate_engine.gate_history(project_id, limit=limit))


@app.route("/api/projects/<project_id>/crosscheck")
def api_crosscheck(project_id):
    project = pipeline_manager.get_project(project_id)
    if project.get("status") != "success":
        return _respond(project)
    return _respond(cross_document.validate_project_documents(project_id))


@app.route("/api/projects/<project_id>/crosscheck/unify", methods=["POST"])
def api_unify(project_id):
    body = _body()
    if not body.get("field") or not body.get("source_role"):
        return jsonify({"status": "error",
                        "message": "field and source_role are required"}), 400
    return _respond(cross_document.apply_unify(
        project_id, body["field"], body["source_role"]))


# =========================================================================
# CRM
# =========================================================================
@app.route("/api/buyers", methods=["GET"])
def api_list_buyers():
    return _respond(buyer_manager.list_buyers(
        deal_stage=request.args.get("stage"),
        country=request.args.get("country"),
        search=request.args.get("q"),
    ))


@app.route("/api/buyers", methods=["POST"])
def api_add_buyer():
    body = _body()
    allowed = ("contact_name", "contact_email", "contact_phone", "website",
               "channel", "buyer_type", "notes", "rating")
    return _respond(buyer_manager.add_buyer(
        body.get("company_name"), body.get("country"),
        **{k: body[k] for k in allowed if k in body}), 201)


@app.route("/api/buyers/<buyer_id>")
def api_get_buyer(buyer_id):
    return _respond(buyer_manager.get_buyer(buyer_id))


@app.route("/api/buyers/<buyer_id>/stage", methods=["PATCH"])
def api_move_buyer(buyer_id):
    deal_stage = _body().get("deal_stage")
    if not deal_stage:
        return jsonify({"status": "error", "message": "deal_stage is required"}), 400
    return _respond(buyer_manager.move_deal_stage(buyer_id, deal_stage))


@app.route("/api/buyers/<buyer_id>/interactions", methods=["POST"])
def api_log_interaction(buyer_id):
    body = _body()
    return _respond(buyer_manager.log_interaction(
        buyer_id,
        body.get("notes"),
        interaction_type=body.get("interaction_type", "note"),
        subject=body.get("subject"),
        next_action=body.get("next_action"),
        next_action_date=body.get("next_action_date"),
    ), 201)


# =========================================================================
# ASSISTANT (edge functions)
# =========================================================================
@app.route("/api/assistant/<function>", methods=["POST"])
def api_assistant(function):
    body = _body()
    if function == "chat":
        result = edge_client.ask_trade_assistant(
            body.get("messages") or [], context=body.get("context"))
    elif function == "ocr":
        result = edge_client.extract_ingredients(
            raw_text=body.get("raw_text"),
            image_base64=body.get("image_base64"),
            image_url=body.get("image_url"))
    elif function == "email":
        result = edge_client.generate_email(
            body.get("email_type"), body.get("context") or {})
    elif function == "approve":
        result = edge_client.approve_regulatory_update(
            body.get("ids") or [], admin_notes=body.get("admin_notes"),
            bulk=bool(body.get("bulk")))
    else:
        return jsonify({"status": "error",
                        "message": f"Unknown assistant function: {function}"}), 404

    if result.get("status") == "success":
        return jsonify(result)
    if result.get("http_status") in (402, 429):
        return jsonify(result), result["http_status"]
    # Only upstream failures carry http_status; argument errors do not
    return jsonify(result), 502 if "http_status" in result else 400


# =========================================================================
# AUDIT
# =========================================================================
@app.route("/api/audit")
def api_audit():
    return _respond(list_events(
        entity_id=request.args.get("entity_id"),
        event_type=request.args.get("event_type"),
        limit=request.args.get("limit", 50, type=int),
    ))


# =========================================================================
# MAIN
# =========================================================================
if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="TradeDesk API")
    parser.add_argument("--port", type=int, default=5001)
    parser.add_argument("--debug", action="store_true")
    parser.add_argument("--host", default="127.0.0.1")
    args = parser.parse_args()

    print(f"TradeDesk API starting on http://{args.host}:{args.port}")
    print(f"Database: {DB_PATH}")
    app.run(host=args.host, port=args.port, debug=args.debug)
