#!/usr/bin/env python3
# CUI // SP-PROPIN
# Controlled by: TradeDesk Portal
# CUI Category: PROPIN (Proprietary Business Information)
# Distribution: D
# POC: TradeDesk System Administrator
"""Edge Function Client — calls the backend's LLM-backed edge functions.

Functions (names configurable in args/edge_config.yaml):
    trade-assistant           chat assistant; may return a drafted document
    ocr-extract               ingredient extraction from text or label image
    generate-email            buyer email drafts (first_proposal, sample_followup, closing)
    approve-rulepack-update   admin approval of crawled regulatory updates

Every call POSTs JSON to {TRADEDESK_BACKEND_URL}/functions/v1/<name> with
the anon key as bearer token and returns a status dict; transport and HTTP
errors never raise.

Usage:
    python tradedesk/edge/edge_client.py --assistant "What HS code fits a face serum?" --json
    python tradedesk/edge/edge_client.py --ocr-text "Water, Glycerin, Niacinamide" --json
    python tradedesk/edge/edge_client.py --email first_proposal --buyer "Glow Imports" --json
    python tradedesk/edge/edge_client.py --approve ID1,ID2 [--notes "ok"] --json
"""

import argparse
import json
import logging
import os
from pathlib import Path

import requests
import yaml

BASE_DIR = Path(__file__).resolve().parent.parent.parent
EDGE_CONFIG_PATH = BASE_DIR / "args" / "edge_config.yaml"

logger = logging.getLogger("tradedesk.edge")

EMAIL_TYPES = ("first_proposal", "sample_followup", "closing")

DEFAULT_EDGE_CONFIG = {
    "timeout": 30,
    "functions": {
        "trade_assistant": "trade-assistant",
        "ocr_extract": "ocr-extract",
        "generate_email": "generate-email",
        "approve_regulatory_update": "approve-rulepack-update",
    },
}


def _load_config():
    """Load args/edge_config.yaml over the built-in defaults."""
    config = {"timeout": DEFAULT_EDGE_CONFIG["timeout"],
              "functions": dict(DEFAULT_EDGE_CONFIG["functions"])}
    if EDGE_CONFIG_PATH.exists():
        with open(EDGE_CONFIG_PATH, "r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if loaded.get("timeout"):
            config["timeout"] = loaded["timeout"]
        config["functions"].update(loaded.get("functions") or {})
    return config


def backend_url():
    return os.environ.get("TRADEDESK_BACKEND_URL", "").rstrip("/")


def _error_message(resp):
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(data, dict):
        return data.get("error") or data.get("message") or json.dumps(data)
    return str(data)


def call_function(function_key, payload):
    """POST ``payload`` to an edge function and return a status dict.

    Returns {"status": "success", "data": <json>} or
    {"status": "error", "error": <message>, "http_status": <int|None>}.
    """
    config = _load_config()
    name = config["functions"].get(function_key)
    if not name:
        return {"status": "error", "error": f"Unknown edge function: {function_key}",
                "http_status": None}

    base = backend_url()
    if not base:
        return {"status": "error", "error": "TRADEDESK_BACKEND_URL is not set",
                "http_status": None}

    url = f"{base}/functions/v1/{name}"
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {os.environ.get('TRADEDESK_BACKEND_ANON_KEY', '')}",
    }
    timeout = config["timeout"]

    try:
        resp = requests.post(url, json=payload, headers=headers, timeout=timeout)
        if resp.status_code == 429:
            logger.warning("Edge function %s rate limited", name)
            return {"status": "error", "http_status": 429,
                    "error": "Too many requests. Please try again shortly."}
        if resp.status_code == 402:
            return {"status": "error", "http_status": 402,
                    "error": "AI credits exhausted."}
        resp.raise_for_status()
        data = resp.json()
    except requests.exceptions.ConnectionError as exc:
        logger.error("Edge function %s unreachable: %s", name, exc)
        return {"status": "error", "error": f"Connection error: {exc}",
                "http_status": None}
    except requests.exceptions.Timeout:
        return {"status": "error", "error": f"Request timed out after {timeout}s",
                "http_status": None}
    except requests.exceptions.HTTPError:
        message = _error_message(resp)
        logger.error("Edge function %s failed (%s): %s", name,
                     resp.status_code, message)
        return {"status": "error", "error": message,
                "http_status": resp.status_code}
    except ValueError as exc:
        return {"status": "error", "error": f"Invalid JSON response: {exc}",
                "http_status": resp.status_code}

    # Functions may report failure inside a 200 body
    if isinstance(data, dict) and data.get("error"):
        error = data["error"]
        message = data.get("message") if error is True else error
        return {"status": "error", "error": message or "Edge function error",
                "http_status": resp.status_code}

    return {"status": "success", "data": data}


# ---------------------------------------------------------------------------
# Functions
# ---------------------------------------------------------------------------

def ask_trade_assistant(messages, context=None, user_id=None):
    """Send chat history to the trade assistant.

    Returns the reply text and, when the assistant drafted one, the
    document ({"type": ..., "data": {...}}).
    """
    if not messages:
        return {"status": "error", "error": "messages must not be empty"}

    payload = {"messages": messages}
    if context:
        payload["context"] = context
    if user_id:
        payload["userId"] = user_id

    result = call_function("trade_assistant", payload)
    if result["status"] != "success":
        return result
    data = result["data"] if isinstance(result["data"], dict) else {}
    return {
        "status": "success",
        "reply": data.get("message", ""),
        "document": data.get("document"),
    }


def extract_ingredients(raw_text=None, image_base64=None, image_url=None):
    """OCR / parse a cosmetic ingredient list (exactly one source required)."""
    sources = {"rawText": raw_text, "imageBase64": image_base64,
               "imageUrl": image_url}
    given = {k: v for k, v in sources.items() if v}
    if len(given) != 1:
        return {"status": "error",
                "error": "Provide exactly one of raw_text, image_base64, image_url"}

    result = call_function("ocr_extract", given)
    if result["status"] != "success":
        return result
    data = result["data"] if isinstance(result["data"], dict) else {}
    return {
        "status": "success",
        "ingredients": data.get("ingredients") or [],
        "warnings": data.get("warnings") or [],
        "raw_text": data.get("rawText", ""),
    }


def generate_email(email_type, context):
    """Draft a buyer email of ``email_type`` from deal context."""
    if email_type not in EMAIL_TYPES:
        return {"status": "error",
                "error": f"Invalid email type: {email_type}",
                "valid_types": list(EMAIL_TYPES)}

    result = call_function("generate_email",
                           {"emailType": email_type, "context": context or {}})
    if result["status"] != "success":
        return result
    data = result["data"] if isinstance(result["data"], dict) else {}
    return {
        "status": "success",
        "email": {
            "subject": data.get("subject", ""),
            "body": data.get("body", ""),
            "type": email_type,
            "language": data.get("language") or (context or {}).get("language", "en"),
        },
    }


def approve_regulatory_update(update_ids, admin_notes=None, bulk=False):
    """Approve pending regulatory rule updates so they merge into rule packs."""
    if isinstance(update_ids, str):
        update_ids = [update_ids]
    if not update_ids:
        return {"status": "error", "error": "At least one update id is required"}

    payload = {"ids": list(update_ids), "bulk": bool(bulk)}
    if admin_notes:
        payload["admin_notes"] = admin_notes
    result = call_function("approve_regulatory_update", payload)
    if result["status"] != "success":
        return result
    data = result["data"] if isinstance(result["data"], dict) else {}
    return {"status": "success", "approved": len(update_ids), "result": data}


def main():
    parser = argparse.ArgumentParser(description="TradeDesk edge function client")
    parser.add_argument("--assistant", metavar="MESSAGE")
    parser.add_argument("--ocr-text", metavar="TEXT")
    parser.add_argument("--email", choices=EMAIL_TYPES)
    parser.add_argument("--buyer", help="Buyer company for --email")
    parser.add_argument("--approve", metavar="IDS", help="Comma-separated update ids")
    parser.add_argument("--notes")
    parser.add_argument("--json", action="store_true")
    args = parser.parse_args()

    if args.assistant:
        result = ask_trade_assistant([{"role": "user", "content": args.assistant}])
    elif args.ocr_text:
        result = extract_ingredients(raw_text=args.ocr_text)
    elif args.email:
        result = generate_email(args.email, {"buyerCompany": args.buyer})
    elif args.approve:
        result = approve_regulatory_update(
            [i.strip() for i in args.approve.split(",") if i.strip()], args.notes)
    else:
        parser.print_help()
        return

    print(json.dumps(result, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
