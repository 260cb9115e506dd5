"""
Flask demo gating routes on a NebulAuth license key.

Usage:
    pip install -e ".[examples]"
    flask --app examples.flask_demo run --port 8010

Test with curl:
    curl http://localhost:8010/public
    curl -H "X-License-Key: mk_live_..." http://localhost:8010/download

Environment variables:
    NEBULAUTH_BEARER_TOKEN, NEBULAUTH_SIGNING_SECRET - API credentials
    NEBULAUTH_BASE_URL - Override the API base URL
    DEMO_REQUIRE_VALID - Set to "true" to reject requests without a valid key
"""

import logging
import os

from flask import Flask, g, jsonify, request

from nebulauth import ClientOptions, NebulAuthClient
from nebulauth.middleware import ENVIRON_KEY, NebulAuthWSGIMiddleware

logging.basicConfig(level=logging.INFO)

REQUIRE_VALID = os.getenv("DEMO_REQUIRE_VALID", "false").lower() == "true"

app = Flask(__name__)

app.wsgi_app = NebulAuthWSGIMiddleware(
    app.wsgi_app,
    client=NebulAuthClient(ClientOptions.from_env()),
    require_valid=REQUIRE_VALID,
)


@app.before_request
def attach_license():
    """Expose the license state as flask.g.license."""
    g.license = request.environ.get(ENVIRON_KEY)


@app.route("/public")
def public():
    return jsonify({"message": "This is public content"})


@app.route("/download")
def download():
    state = g.license

    if state is None:
        return jsonify({"error": "Middleware not configured"}), 500

    if not state.valid:
        return jsonify({"licensed": False, "error": state.error or "License is not valid"}), 403

    return jsonify({"licensed": True, "license": state.response.data})


@app.route("/health")
def health():
    return jsonify({"status": "ok"})


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=8010, debug=True)
