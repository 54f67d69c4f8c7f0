import argparse
import asyncio
import json
import logging
import sys

from api_client import ApiClient
from api_errors import ApiError
from auth.service import AuthService
from auth.token_store import JsonFileCredentialStore
from config import get_settings

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
log = logging.getLogger(__name__)


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Call the API with the stored session.")
    parser.add_argument("method", choices=["get", "post", "put", "patch", "delete"])
    parser.add_argument("path", help="e.g. /api/auth/profile")
    parser.add_argument("--data", help="JSON body (query params for get/delete)")
    parser.add_argument("--login", nargs=2, metavar=("USERNAME", "PASSWORD"),
                        help="log in before making the call")
    return parser.parse_args(argv)


def _session_invalidated():
    log.warning("Session expired, log in again with --login")


async def run(args) -> int:
    settings = get_settings()
    store = JsonFileCredentialStore(settings.credentials_file)
    client = ApiClient.from_settings(
        settings, store, on_session_invalidated=_session_invalidated,
    )
    try:
        if args.login:
            await AuthService(client).login(*args.login)
        data = json.loads(args.data) if args.data else None
        result = await getattr(client, args.method)(args.path, data)
    except ApiError as e:
        log.error("%s", e)
        return 1
    finally:
        await client.close()

    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(run(_parse_args())))
