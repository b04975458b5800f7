"""
Fitbit CLI tool for retrieving fitness data.

Usage:
    fitbit-grabber token [--timeout SECONDS] [--no-browser]
    fitbit-grabber refresh-token
    fitbit-grabber tokens
    fitbit-grabber heart --date YYYY-MM-DD
    fitbit-grabber step --date YYYY-MM-DD
    fitbit-grabber weight --date YYYY-MM-DD [--period 1w | --end-date YYYY-MM-DD]
    fitbit-grabber sleep --date YYYY-MM-DD
    fitbit-grabber user
    fitbit-grabber devices
    fitbit-grabber alarms --tracker-id ID [--user USER_ID]
    fitbit-grabber daily-activity-summary --date YYYY-MM-DD [--user USER_ID]
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

from .callback_server import CallbackListener, NullBrowserOpener, WebBrowserOpener
from .config import DEFAULT_CONFIG_PATH, load_config
from .errors import DeserializationError, FitbitError
from .fitbit_client import FitbitClient
from .oauth_manager import OAuthManager
from .query import DateQuery, Period, parse_date
from .token_store import TokenStore

logger = logging.getLogger(__name__)

DATA_COMMANDS = {
    "heart", "step", "weight", "sleep", "user", "devices", "alarms", "daily-activity-summary",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="fitbit-grabber", description="Fitbit Web API client")
    parser.add_argument("-c", "--config", help=f"path to config file (default {DEFAULT_CONFIG_PATH})")
    parser.add_argument("--token-file", help="path to the stored credential (default .token)")
    parser.add_argument("--pretty", action="store_true", help="pretty-print JSON responses")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    token = subparsers.add_parser("token", help="request an access token")
    token.add_argument("--timeout", type=float, default=None,
                       help="seconds to wait for the browser callback (default: forever)")
    token.add_argument("--no-browser", action="store_true", help="only print the authorization URL")

    subparsers.add_parser("refresh-token", help="refresh token")
    subparsers.add_parser("tokens", help="show stored token status")

    def data_command(name: str, help_text: str, with_date: bool = True) -> argparse.ArgumentParser:
        sub = subparsers.add_parser(name, help=help_text)
        if with_date:
            sub.add_argument("--date", required=True, type=parse_date, help="date to fetch data for")
        sub.add_argument("--refresh-if-expired", action="store_true",
                         help="refresh the stored token first if it has expired")
        return sub

    data_command("heart", "fetch heart data")
    data_command("step", "fetch step data")
    weight = data_command("weight", "fetch body weight data")
    span = weight.add_mutually_exclusive_group()
    span.add_argument("--period", choices=[p.value for p in Period], help="period since --date")
    span.add_argument("--end-date", type=parse_date, help="end of the date range")
    data_command("sleep", "fetch sleep logs")
    data_command("user", "get user profile", with_date=False)
    data_command("devices", "list devices connected to account", with_date=False)
    alarms = data_command("alarms", "list alarms connected to device", with_date=False)
    alarms.add_argument("--tracker-id", required=True, help="the ID of the tracker for which data is returned")
    alarms.add_argument("--user", default="-", help="user id (default: current user)")
    summary = data_command("daily-activity-summary", "get daily activity summary")
    summary.add_argument("--user", default="-", help="user id (default: current user)")

    return parser


def fetch(client: FitbitClient, args: argparse.Namespace) -> str:
    """Run the data command named by args and return the raw response body."""
    command = args.command
    if command == "heart":
        return client.heart(args.date)
    if command == "step":
        return client.step(args.date)
    if command == "weight":
        if args.end_date:
            query = DateQuery.date_range(args.date, args.end_date)
        elif args.period:
            query = DateQuery.periodic_since(args.date, Period(args.period))
        else:
            query = DateQuery.for_date(args.date)
        return client.body_weight(query)
    if command == "sleep":
        return client.sleep(args.date)
    if command == "user":
        return client.user_profile()
    if command == "devices":
        return client.devices()
    if command == "alarms":
        return client.alarms(args.tracker_id, user_id=args.user)
    if command == "daily-activity-summary":
        return client.daily_activity_summary(args.date, user_id=args.user)
    raise ValueError(f"Unknown command: {command}")


def print_token_status(store: TokenStore) -> None:
    print("🔍 Fitbit Token Status:")
    print()
    if not store.exists():
        print(f"Token File: ❌ Missing ({store.path})")
        print("Run: fitbit-grabber token")
        return
    credential = store.load()
    print(f"Access Token: {'✅ Valid' if credential.access_token else '❌ Missing'}")
    print(f"Refresh Token: {'✅ Available' if credential.refresh_token else '❌ Missing'}")
    if credential.expires_at:
        expiration_time = datetime.fromtimestamp(credential.expires_at, timezone.utc)
        print(f"Expires: {expiration_time.strftime('%Y-%m-%d %H:%M:%S %Z')}")
    else:
        print("Expires: unknown")
    print(f"Token Expired: {'❌ Yes' if credential.is_expired() else '✅ No'}")


def run(args: argparse.Namespace) -> None:
    config = load_config(args.config)
    store = TokenStore(args.token_file or config.token_file)

    if args.command == "token":
        oauth = OAuthManager(config.authorization_request(), store=store)
        opener = NullBrowserOpener() if args.no_browser else WebBrowserOpener()
        oauth.authenticate(CallbackListener(config.redirect_uri), opener, timeout=args.timeout)
        print(f"\n✅ Saved Fitbit token to {store.path}")
    elif args.command == "refresh-token":
        print("🔄 Refreshing Fitbit tokens...")
        OAuthManager(config.authorization_request(), store=store).refresh()
        print("✅ Fitbit tokens refreshed!")
    elif args.command == "tokens":
        print_token_status(store)
    elif args.command in DATA_COMMANDS:
        if args.refresh_if_expired:
            credential = OAuthManager(config.authorization_request(), store=store).ensure_valid_token()
        else:
            credential = store.load()
        client = FitbitClient(credential)
        try:
            body = fetch(client, args)
        finally:
            client.close()
        if args.pretty:
            try:
                body = json.dumps(json.loads(body), indent=2, sort_keys=True)
            except ValueError as e:
                raise DeserializationError(f"response is not JSON: {e}") from e
        print(body)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for Fitbit CLI commands."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    try:
        run(args)
    except FitbitError as e:
        logger.debug("%s failed", args.command, exc_info=True)
        print(f"\n❌ {args.command} failed: {e}", file=sys.stderr)
        if args.command == "refresh-token":
            print("Refresh token invalid? Re-authenticate with: fitbit-grabber token", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
