#!/usr/bin/env python3
"""
YouTube Uploads Browser
Signs in with a Google account and lists that account's public uploads,
sorted by title.
"""

import argparse
import os
import sys
from typing import List, Optional

from console_views import (
    ConsoleDirectView,
    ConsoleUploadService,
    ConsoleUploadsView,
    prompt_account,
    render_missing_configurations,
    save_to_json,
)
from utils import SettingsStore, get_logger, setup_logging
from youtube_auth import YouTubeAuth
from youtube_config import ensure_configured, load_config
from youtube_errors import ConfigurationError
from youtube_session import ACCOUNT_KEY, SessionController, SessionState
from youtube_uploads import ApiSession

DEFAULT_WAIT_SECONDS = 300

# The user is answering a consent or account prompt; the timeout does not run
USER_WAIT_STATES = (SessionState.AWAITING_CONSENT, SessionState.UNAUTHENTICATED)

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="List the public uploads of your YouTube channel")
    parser.add_argument("--account", help="Google account to use (remembered for next time)")
    parser.add_argument("--choose-account", action="store_true", help="Pick a different account")
    parser.add_argument("--forget-account", action="store_true", help="Forget the remembered account and exit")
    parser.add_argument("--clear-session", action="store_true", help="Clear cached tokens and exit")
    parser.add_argument("--manual-auth", action="store_true", help="Paste the authorization code instead of using a local server")
    parser.add_argument("--upload", metavar="PATH", help="Hand a media file to the upload service after signing in")
    parser.add_argument("--output", help="Save listed videos to JSON file")
    parser.add_argument("--timeout", type=float, default=DEFAULT_WAIT_SECONDS, help="Seconds to wait for results, not counting time spent on consent")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "INFO"), help="Logging level")
    return parser.parse_args(argv)


def wait_for_results(controller: SessionController, timeout: float) -> bool:
    """Wait for pending fetches. Returns False when they did not finish in time."""
    while not controller.wait(timeout):
        if controller.state not in USER_WAIT_STATES:
            return False
        logger.info("Waiting for authorization of %s", controller.account)
    return True


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level.upper())

    config = load_config()
    try:
        ensure_configured(config)
    except ConfigurationError as exc:
        render_missing_configurations(exc.missing)
        return 2

    settings = SettingsStore(config.settings_path)
    auth = YouTubeAuth(config, manual=args.manual_auth)

    if args.forget_account:
        settings.remove(ACCOUNT_KEY)
        logger.info("Remembered account cleared")
        return 0
    if args.clear_session:
        auth.clear_session()
        return 0
    if args.upload and not os.path.isfile(args.upload):
        logger.error("No such file: %s", args.upload)
        return 2

    view = ConsoleUploadsView()
    uploader = ConsoleUploadService()
    controller = SessionController(
        config,
        auth,
        settings,
        uploads_view=view,
        direct_view=ConsoleDirectView(),
        api=ApiSession.from_config(config),
        account_picker=prompt_account,
        uploader=uploader,
    )

    with controller:
        if args.account:
            controller.select_account(args.account)
        elif args.choose_account:
            controller.choose_account()
        else:
            controller.start()

        if not wait_for_results(controller, args.timeout):
            logger.warning("Timed out after %.0fs waiting for results", args.timeout)

        if args.upload:
            controller.select_file(args.upload)
            if not controller.upload():
                logger.error("%s was not handed to the upload service", args.upload)
                return 1

    if view.profile is None and not view.videos:
        return 1

    if args.output:
        save_to_json(view.videos, args.output)

    logger.info(
        "Quota usage: used=%d remaining=%d",
        controller.api.quota.used,
        controller.api.quota.remaining(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
