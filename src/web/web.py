"""
Stream Web Application - Flask Application.

This module implements the HTTP surface of the stream: reader pages, the
Atom feed, a JSON listing API and the token-protected admin endpoints used
to author entries.

Architecture:
    The EntryStore and StreamPublisher are constructed once at startup and
    injected through create_app(); route handlers read them from app.config.

Endpoints:
    GET    /health                 - liveness check
    GET    /                       - HTML index (limit/offset pagination)
    GET    /entry/<id>             - HTML permalink for one entry
    GET    /feed                   - Atom feed of the latest entries
    GET    /api/entries            - JSON listing with next_offset
    GET    /api/entries/<id>       - JSON entry
    POST   /admin/entries          - create an entry
    POST   /admin/entries/<id>     - update an entry (PUT also accepted)
    DELETE /admin/entries/<id>     - delete an entry
    GET    /admin/share            - Web Share Target form (HTML) or prefill values (JSON)
    GET    /admin/login            - sign-in form for browsers
    POST   /admin/login            - exchange the admin token for a session cookie
    GET    /manifest.json          - web app manifest registering the share target
    GET    /service-worker.js      - offline caching service worker
    GET    /offline                - page shown by the service worker when offline
    GET    /.well-known/host-meta, host-meta.xrd, host-meta.jrd, webfinger
                                   - 302 to the configured fedsoc_bridge

Error Handling:
    Store failures are reported to the caller:
    - 400: Payload failed schema validation
    - 401: Missing or wrong X-Admin-Token or session cookie
    - 404: Entry not found
    - 500: Storage failure
    - 503: Admin API disabled (no admin token configured)
    Notification failures never change the response of a write.

    Error responses are JSON:
        {"status": "error", "message": "..."}
"""
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from flask import Flask, Response, current_app, jsonify, redirect, render_template, request
from flask_cors import CORS
from markupsafe import Markup

from config import get_admin_token, load_config
from entries import Entry, EntryNotFoundError, EntryStore, StorageError
from schema import entry_errors
from stream.publisher import StreamPublisher
from web.share import share_target_to_form


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
FEED_SIZE = 10

ADMIN_COOKIE = "stream_admin"
ADMIN_COOKIE_MAX_AGE = 30 * 24 * 60 * 60

FEDSOC_PATHS = (
    "/.well-known/host-meta",
    "/.well-known/host-meta.xrd",
    "/.well-known/host-meta.jrd",
    "/.well-known/webfinger",
)


class EntryValidationError(Exception):
    """Raised when an admin payload fails schema validation."""


def parse_with_default(value: Optional[str], default: int) -> int:
    """Parse an integer query parameter, returning ``default`` on failure."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def next_offset(offset: int, limit: int, returned: int) -> int:
    """Offset of the next page, or -1 when this page was the last one."""
    if limit <= 0 or returned < limit:
        return -1
    return offset + limit


def validate_entry_payload(payload: Any) -> Dict[str, str]:
    """Validate an entry payload against ENTRY_SCHEMA.

    Raises:
        EntryValidationError: With the failing field path and message.
    """
    errors = entry_errors(payload)
    if errors:
        raise EntryValidationError(f"Schema validation failed: {errors[0]}")
    return {"title": payload["title"], "content": payload["content"]}


def _request_payload() -> Any:
    if request.is_json:
        return request.get_json(silent=True)
    return {key: request.form[key] for key in ("title", "content") if key in request.form}


def _wants_html() -> bool:
    # Browsers rank text/html above */*; API clients without an Accept header get JSON
    accept = request.accept_mimetypes
    return accept["text/html"] > accept["application/json"]


def _safe_next(value: Optional[str]) -> str:
    """Return a same-site path to continue to after sign-in, "/" otherwise."""
    if value and value.startswith("/") and not value.startswith(("//", "/\\")):
        return value
    return "/"


def _secrets_match(provided: Optional[str], expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def admin_session_value(token: str) -> str:
    """Cookie value that proves knowledge of the admin token without storing it."""
    return hmac.new(token.encode("utf-8"), b"stream admin session", hashlib.sha256).hexdigest()


def _error(message: str, status: int, details: Optional[str] = None):
    body = {"status": "error", "message": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def create_app(
    store: EntryStore,
    publisher: StreamPublisher,
    config: Optional[Dict[str, Any]] = None,
) -> Flask:
    """Factory function to create and configure the Flask application.

    Args:
        store: EntryStore used for reads
        publisher: StreamPublisher used for writes and rendering
        config: Optional configuration dictionary (loaded from config.yml if None)

    Returns:
        Configured Flask application instance

    Example:
        >>> app = create_app(store, publisher, config)
        >>> client = app.test_client()
    """
    app = Flask(__name__)

    if config is None:
        config = load_config()

    cors_config = config.get("cors", {}) or {}
    if cors_config.get("enabled", False):
        cors_origins = cors_config.get("origins", [])
        if cors_origins:
            CORS(app, origins=cors_origins)
            logger.info(f"CORS enabled for origins: {cors_origins}")
        else:
            logger.warning("CORS enabled but no origins configured")
    else:
        logger.info("CORS is disabled in configuration")

    app.config["ENTRY_STORE"] = store
    app.config["PUBLISHER"] = publisher
    app.config["SITE"] = {
        "title": config.get("title", "Stream"),
        "author": config.get("author", ""),
        "host": publisher.host,
        "hub_url": (config.get("websub", {}) or {}).get("hub_url"),
        "fedsoc_bridge": config.get("fedsoc_bridge"),
    }

    admin_token = get_admin_token(config)
    app.config["ADMIN_TOKEN"] = admin_token
    if admin_token:
        logger.info("Admin token configured for admin endpoints")
    else:
        logger.warning("No admin token configured; admin endpoints are disabled")

    @app.template_filter("atom_time")
    def atom_time(value: datetime) -> str:
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    @app.template_filter("trunc")
    def trunc(value: str, length: int = 80) -> str:
        if len(value) > length:
            return value[:length] + "..."
        return value

    def to_display(entry: Entry) -> Dict[str, Any]:
        rendered = current_app.config["PUBLISHER"].render(entry.content)
        return {
            "id": entry.id,
            "title": entry.title,
            "html": Markup(rendered),
            # Escaped by the template, for Atom <content type="html">
            "raw_html": rendered,
            "permalink": current_app.config["PUBLISHER"].permalink(entry.id),
            "created": entry.created,
            "updated": entry.updated,
        }

    def require_admin():
        token = current_app.config.get("ADMIN_TOKEN")
        if not token:
            return _error("Admin API disabled", 503)
        # The header wins over the cookie when both are sent
        provided = request.headers.get("X-Admin-Token")
        if provided:
            authorized = _secrets_match(provided, token)
        else:
            authorized = _secrets_match(request.cookies.get(ADMIN_COOKIE), admin_session_value(token))
        if not authorized:
            logger.warning(f"Unauthorized admin request: {request.method} {request.path}")
            return _error("Unauthorized", 401)
        return None

    @app.errorhandler(EntryNotFoundError)
    def handle_not_found(e: EntryNotFoundError):
        logger.info(f"Entry not found: {e.entry_id[:50]!r}")
        if request.path.startswith("/entry/"):
            return render_template("not_found.html", site=current_app.config["SITE"]), 404
        return _error("Entry not found", 404)

    @app.errorhandler(StorageError)
    def handle_storage_error(e: StorageError):
        logger.error(f"Storage failure handling {request.method} {request.path}: {e}")
        return _error("Storage failure", 500)

    @app.errorhandler(EntryValidationError)
    def handle_validation_error(e: EntryValidationError):
        logger.warning(f"Invalid entry payload: {e}")
        return _error("Invalid entry payload", 400, details=str(e))

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint for monitoring and load balancers."""
        return jsonify({"status": "healthy"}), 200

    @app.route("/", methods=["GET", "HEAD"])
    def index():
        limit = parse_with_default(request.args.get("limit"), DEFAULT_PAGE_SIZE)
        offset = parse_with_default(request.args.get("offset"), 0)
        entries = current_app.config["ENTRY_STORE"].list(limit, offset)
        return render_template(
            "index.html",
            site=current_app.config["SITE"],
            entries=[to_display(e) for e in entries],
            next_offset=next_offset(offset, limit, len(entries)),
            limit=limit,
        )

    @app.route("/entry/<entry_id>", methods=["GET", "HEAD"])
    def entry_page(entry_id: str):
        entry = current_app.config["ENTRY_STORE"].get(entry_id)
        return render_template(
            "entry.html",
            site=current_app.config["SITE"],
            entry=to_display(entry),
        )

    @app.route("/feed", methods=["GET", "HEAD"])
    def feed():
        entries = current_app.config["ENTRY_STORE"].list(FEED_SIZE, 0)
        updated = datetime.fromtimestamp(0, tz=timezone.utc)
        for entry in entries:
            if entry.updated > updated:
                updated = entry.updated
        body = render_template(
            "atom.xml",
            site=current_app.config["SITE"],
            feed_url=current_app.config["PUBLISHER"].feed_url,
            updated=updated,
            entries=[to_display(e) for e in entries],
        )
        return Response(body, mimetype="application/atom+xml")

    @app.route("/api/entries", methods=["GET"])
    def list_entries():
        limit = parse_with_default(request.args.get("limit"), DEFAULT_PAGE_SIZE)
        offset = parse_with_default(request.args.get("offset"), 0)
        entries = current_app.config["ENTRY_STORE"].list(limit, offset)
        return jsonify({
            "entries": [e.to_dict() for e in entries],
            "next_offset": next_offset(offset, limit, len(entries)),
        }), 200

    @app.route("/api/entries/<entry_id>", methods=["GET"])
    def get_entry(entry_id: str):
        entry = current_app.config["ENTRY_STORE"].get(entry_id)
        return jsonify(entry.to_dict()), 200

    @app.route("/admin/entries", methods=["POST"])
    def create_entry():
        denied = require_admin()
        if denied:
            return denied

        payload = validate_entry_payload(_request_payload())
        publisher = current_app.config["PUBLISHER"]
        entry_id = publisher.create_entry(payload["content"], payload["title"])
        if _wants_html():
            return redirect(publisher.permalink(entry_id), 303)
        return jsonify({
            "status": "success",
            "id": entry_id,
            "permalink": publisher.permalink(entry_id),
        }), 201

    @app.route("/admin/entries/<entry_id>", methods=["POST", "PUT"])
    def update_entry(entry_id: str):
        denied = require_admin()
        if denied:
            return denied

        payload = validate_entry_payload(_request_payload())
        entry = current_app.config["PUBLISHER"].update_entry(entry_id, payload["content"], payload["title"])
        return jsonify({"status": "success", "entry": entry.to_dict()}), 200

    @app.route("/admin/entries/<entry_id>", methods=["DELETE"])
    def delete_entry(entry_id: str):
        denied = require_admin()
        if denied:
            return denied

        current_app.config["PUBLISHER"].delete_entry(entry_id)
        return jsonify({"status": "success", "id": entry_id}), 200

    @app.route("/admin/share", methods=["GET"])
    def share_target():
        denied = require_admin()
        if denied:
            if _wants_html() and denied[1] == 401:
                return redirect(f"/admin/login?{urlencode({'next': request.full_path})}", 302)
            return denied

        form = share_target_to_form(request.args)
        logger.info(f"Share target form: {form}")
        if _wants_html():
            return render_template("share.html", site=current_app.config["SITE"], form=form)
        return jsonify(form), 200

    @app.route("/admin/login", methods=["GET", "POST"])
    def login():
        site = current_app.config["SITE"]
        token = current_app.config.get("ADMIN_TOKEN")
        if not token:
            return _error("Admin API disabled", 503)

        next_path = _safe_next(request.values.get("next"))
        if request.method == "GET":
            return render_template("login.html", site=site, next=next_path, error=None)

        if not _secrets_match(request.form.get("token"), token):
            logger.warning("Failed admin sign-in")
            return render_template("login.html", site=site, next=next_path, error="Wrong token."), 401

        logger.info("Admin signed in")
        response = redirect(next_path, 303)
        response.set_cookie(
            ADMIN_COOKIE,
            admin_session_value(token),
            max_age=ADMIN_COOKIE_MAX_AGE,
            path="/",
            secure=request.is_secure or site["host"].startswith("https://"),
            httponly=True,
            samesite="Lax",
        )
        return response

    @app.route("/manifest.json", methods=["GET"])
    def manifest():
        site = current_app.config["SITE"]
        return jsonify({
            "name": site["title"],
            "short_name": site["title"],
            "start_url": "/",
            "scope": "/",
            "display": "standalone",
            "share_target": {
                "action": "/admin/share",
                "method": "GET",
                "params": {"title": "title", "text": "text", "url": "url"},
            },
        }), 200

    @app.route("/service-worker.js", methods=["GET"])
    def service_worker():
        return Response(render_template("service-worker.js"), mimetype="text/javascript")

    @app.route("/offline", methods=["GET"])
    def offline():
        return render_template("offline.html", site=current_app.config["SITE"])

    def make_bridge_redirect(path: str):
        def bridge_redirect():
            bridge = current_app.config["SITE"]["fedsoc_bridge"]
            if not bridge:
                return _error("Not found", 404)
            location = bridge.rstrip("/") + path
            query = request.query_string.decode("utf-8", errors="replace")
            if query:
                location += "?" + query
            logger.info(f"Redirecting to: {location!r}")
            return redirect(location, 302)
        return bridge_redirect

    for path in FEDSOC_PATHS:
        endpoint = "bridge_" + path.rsplit("/", 1)[1].replace(".", "_")
        app.add_url_rule(path, endpoint=endpoint, view_func=make_bridge_redirect(path), methods=["GET"])

    return app
