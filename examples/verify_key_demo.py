"""
Verify a license key and list keys from the dashboard.

Usage:
    export NEBULAUTH_BEARER_TOKEN=mk_at_...
    export NEBULAUTH_SIGNING_SECRET=mk_sig_...
    export NEBULAUTH_DASHBOARD_BEARER_TOKEN=mk_at_...
    python examples/verify_key_demo.py mk_live_... [hwid]
"""

import asyncio
import logging
import sys

from nebulauth import (
    ClientOptions,
    DashboardClientOptions,
    NebulAuthClient,
    NebulAuthDashboardClient,
    NebulAuthError,
    VerifyKeyInput,
)

logger = logging.getLogger("verify_key_demo")


async def main(key: str, hwid: str | None) -> int:
    client = NebulAuthClient(ClientOptions.from_env())

    try:
        response = await client.verify_key(VerifyKeyInput(key=key, hwid=hwid))
    except NebulAuthError as e:
        logger.error("verify_key failed: %s (%s)", e.message, e.kind)
        return 1

    print(f"valid={response.data.get('valid')} data={response.data}")

    dashboard_options = DashboardClientOptions.from_env()
    if dashboard_options.auth is None:
        return 0

    dashboard = NebulAuthDashboardClient(dashboard_options)
    keys = await dashboard.list_keys()
    print(f"dashboard keys: {keys.data}")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(2)
    sys.exit(asyncio.run(main(sys.argv[1], sys.argv[2] if len(sys.argv) > 2 else None)))
