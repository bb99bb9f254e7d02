import argparse
import asyncio
import json
import logging
from logging.config import dictConfig
import os
import sys
from typing import List, Optional

from pydantic import ValidationError
import sentry_sdk

from study.applelogin.siwa.app.config import Settings
from study.applelogin.siwa.app.service import AuthorizationService
from study.applelogin.siwa.apple.errors import SiwaError
from study.applelogin.siwa.apple.jwt import ClientSecretSigner, decode_payload

logger = logging.getLogger(__name__)


def configure_logging(debug: bool = False):
    logging_config_file = os.getenv("LOGGING_CONFIG_FILE", "")

    if len(logging_config_file) > 0:
        with open(logging_config_file) as fl:
            dictConfig(json.load(fl))
        return

    logging.basicConfig()
    logging.getLogger().setLevel(logging.DEBUG if debug else logging.INFO)


def load_settings() -> Settings:
    try:
        settings = Settings()  # type: ignore[call-arg]
    except ValidationError as e:
        logger.error("Invalid configuration: %s", e)
        sys.exit(2)

    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, send_default_pii=False)

    return settings


def sign_client_secret(settings: Settings) -> str:
    signer = ClientSecretSigner(settings.key_id, lifetime=settings.client_secret_lifetime)
    return signer.sign(
        settings.team_id, settings.bundle_id, settings.audience, settings.private_key
    )


def secret(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="siwa-secret", description="Print a freshly signed client secret"
    )
    parser.parse_args(argv)

    configure_logging()
    settings = load_settings()
    try:
        print(sign_client_secret(settings))
    except SiwaError:
        logger.exception("Unable to sign client secret")
        sys.exit(1)


def decode(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="siwa-decode",
        description="Print the UNVERIFIED payload of identity tokens",
    )
    parser.add_argument("token", nargs="+", help="The identity token(s) to decode.")
    args = parser.parse_args(argv)

    for token in args.token:
        print(json.dumps(decode_payload(token), sort_keys=True))


async def realRevoke(settings: Settings, refresh_token: str) -> bool:
    async with await AuthorizationService.create(settings) as service:
        result = await service.revoke_token(
            service.create_client_secret(), refresh_token
        )

    if not result.confirmed:
        logger.error("Revocation failed: %s", result.error)
    return result.confirmed


def revoke(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(
        prog="siwa-revoke", description="Revoke an Apple refresh token"
    )
    parser.add_argument("refresh_token", help="The refresh token to revoke.")
    args = parser.parse_args(argv)

    configure_logging()
    settings = load_settings()
    try:
        confirmed = asyncio.run(realRevoke(settings, args.refresh_token))
    except SiwaError:
        logger.exception("Unable to revoke refresh token")
        sys.exit(1)

    sys.exit(0 if confirmed else 1)
