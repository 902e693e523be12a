#!/usr/bin/env python3
"""seed_db.py — Load the services seed file and bootstrap the admin user.

Usage:
  python3 tools/seed_db.py            # dev stage, reads .env.development
  python3 tools/seed_db.py prod       # prod stage, reads .env.production
  python3 tools/seed_db.py --no-clean --data scripts/aws-services-seed.json

Steps:
  1. Clear existing services and users (skipped with --no-clean).
  2. Write services in batches of 25.
  3. Create the admin user from ADMIN_EMAIL / ADMIN_PASSWORD / ADMIN_NAME.
     An existing user with that email is left as is.

Requires AWS_REGION, SERVICES_TABLE_NAME, USERS_TABLE_NAME plus the three
ADMIN_* variables, from the environment or the stage's .env file. Values
already in the environment win over the file.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from cloudcanvas_shared.catalog import BatchOperations, UsersTable, new_user
from cloudcanvas_shared.config import ConfigurationError, Settings, _env, _require
from cloudcanvas_shared.credentials import hash_password
from cloudcanvas_shared.store import BatchWriteError, ConflictError, DocumentStore
from generate_services_data import OUTPUT_PATH, complete_service_record

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
ENV_FILES = {"dev": ".env.development", "prod": ".env.production"}


class SeedDataError(RuntimeError):
    """The seed file is missing or unreadable."""


@dataclass(frozen=True)
class AdminAccount:
    email: str
    password: str
    name: str

    @classmethod
    def from_env(cls) -> "AdminAccount":
        return cls(
            email=_require("ADMIN_EMAIL", _env("ADMIN_EMAIL")),
            password=_require("ADMIN_PASSWORD", _env("ADMIN_PASSWORD")),
            name=_require("ADMIN_NAME", _env("ADMIN_NAME")),
        )


def load_stage_env(stage: str, root: Path = PROJECT_ROOT) -> Optional[Path]:
    env_file = root / ENV_FILES.get(stage, ENV_FILES["dev"])
    if not env_file.is_file():
        logger.info("Environment file %s not found, using process environment only", env_file.name)
        return None
    load_dotenv(env_file, override=False)
    logger.info("Loaded environment from %s", env_file.name)
    return env_file


def load_services(path: Path) -> List[Dict[str, Any]]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SeedDataError(f"Failed to load services data from {path}: {exc}") from exc
    if not isinstance(raw, list):
        raise SeedDataError(f"{path} must contain a JSON array of services")
    try:
        return [complete_service_record(record) for record in raw]
    except (ValueError, AttributeError) as exc:
        raise SeedDataError(str(exc)) from exc


def ensure_admin(users: UsersTable, admin: AdminAccount) -> bool:
    """Create the admin user; False if one with that email already exists."""
    user = new_user(admin.email, admin.name, hash_password(admin.password), is_admin=True)
    try:
        users.create_user(user)
    except ConflictError:
        logger.info("Admin user %s already exists, skipping", admin.email)
        return False
    logger.info("Created admin user %s", admin.email)
    return True


def seed(store: DocumentStore, services: List[Dict[str, Any]], admin: AdminAccount, *, clean: bool = True) -> None:
    ops = BatchOperations(store)
    if clean:
        logger.info("Clearing existing data")
        ops.clear_all_services()
        ops.clear_all_users()

    logger.info("Seeding %d services", len(services))
    ops.batch_create_services(services)
    ensure_admin(UsersTable(store), admin)


def _open_store(settings: Settings) -> DocumentStore:
    return DocumentStore.open(settings)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Seed the Cloud Canvas tables")
    parser.add_argument("stage", nargs="?", default="dev", choices=sorted(ENV_FILES), help="Stage to seed")
    parser.add_argument("--data", default=str(PROJECT_ROOT / OUTPUT_PATH), help="Seed file to load")
    parser.add_argument("--no-clean", dest="clean", action="store_false", help="Keep existing records")
    args = parser.parse_args(argv)

    logger.info("Seeding %s stage", args.stage)
    load_stage_env(args.stage)

    try:
        settings = Settings.from_env()
        settings.require_store()
        admin = AdminAccount.from_env()
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 1

    try:
        services = load_services(Path(args.data))
    except SeedDataError as exc:
        logger.error("%s", exc)
        logger.error("Make sure to run the generation script first: python3 tools/generate_services_data.py")
        return 1

    store = _open_store(settings)
    try:
        seed(store, services, admin, clean=args.clean)
    except BatchWriteError as exc:
        logger.error("Seeding stopped: %s", exc)
        return 1
    except (ClientError, BotoCoreError) as exc:
        logger.error("Seeding failed: %s", exc)
        return 1
    finally:
        store.close()

    logger.info("Seeding complete")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr, format="%(message)s")
    raise SystemExit(main())
