"""
FastAPI demo gating routes on a NebulAuth license key.

Usage:
    pip install -e ".[examples]"
    uvicorn examples.fastapi_demo:app --port 8009 --reload

Test with curl:
    curl http://localhost:8009/public
    curl -H "X-License-Key: mk_live_..." -H "X-HWID: my-machine" http://localhost:8009/download

Environment variables:
    NEBULAUTH_BEARER_TOKEN, NEBULAUTH_SIGNING_SECRET - API credentials
    NEBULAUTH_BASE_URL - Override the API base URL
    NEBULAUTH_REPLAY_PROTECTION - strict (default), lenient or disabled
    DEMO_REQUIRE_VALID - Set to "true" to reject requests without a valid key
"""

import logging
import os

from fastapi import FastAPI, Request

from nebulauth import ClientOptions, NebulAuthASGIMiddleware, NebulAuthClient

logging.basicConfig(level=logging.INFO)

REQUIRE_VALID = os.getenv("DEMO_REQUIRE_VALID", "false").lower() == "true"

client = NebulAuthClient(ClientOptions.from_env())

app = FastAPI(
    title="NebulAuth License Demo",
    version="0.1.0",
)

app.add_middleware(
    NebulAuthASGIMiddleware,
    client=client,
    require_valid=REQUIRE_VALID,
)


@app.get("/")
async def root():
    return {
        "service": "NebulAuth License Demo",
        "api": client.base_url,
        "replay_protection": client.options.replay_protection.value,
        "require_valid": REQUIRE_VALID,
    }


@app.get("/public")
async def public():
    return {"message": "This is public content"}


@app.get("/download")
async def download(request: Request):
    """
    Licensed content.

    In observe mode the handler decides; in require mode the middleware
    has already rejected missing or invalid keys with 401.
    """
    state = request.state.nebulauth

    if not state.present:
        return {"licensed": False, "hint": "Send your key in X-License-Key"}

    if not state.valid:
        return {"licensed": False, "error": state.error or "License is not valid"}

    return {"licensed": True, "license": state.response.data}


@app.get("/health")
async def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8009)
