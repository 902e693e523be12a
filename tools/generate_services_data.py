#!/usr/bin/env python3
"""generate_services_data.py — Build the services seed file from the icon pack.

Walks the architecture-service icon folders (one ``Arch_<Category>`` directory
per category, one SVG per service) and writes a JSON array of service records
ready for ``tools/seed_db.py``.

Usage:
  python3 tools/generate_services_data.py
  python3 tools/generate_services_data.py --root public/aws/Architecture-Service \
      --output scripts/aws-services-seed.json

Generated records start with ``enabled: false`` so nothing is published until
an admin reviews it.
"""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
import uuid
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

from cloudcanvas_shared.categories import FOLDER_TO_CATEGORY
from cloudcanvas_shared.config import SEED_DEFAULT_ENABLED
from cloudcanvas_shared.serialization import _now_iso

logger = logging.getLogger(__name__)

ROOT_PATH = "public/aws/Architecture-Service"
OUTPUT_PATH = "scripts/aws-services-seed.json"
ICON_URL_PREFIX = "/aws/Architecture-Service"

_SIZE_SUFFIX_RE = re.compile(r"_(?:16|32|48|64)$")
_AWS_TOKEN_RE = re.compile(r"\bAWS\b", re.IGNORECASE)
_PROVIDER_PREFIX_RE = re.compile(r"^(?:amazon|aws)\s+", re.IGNORECASE)


# ============================================================================
# Derivations
# ============================================================================


def service_display_name(file_name: str) -> str:
    """``Arch_AWS-Lambda_64.svg`` -> ``Lambda``."""
    name = Path(file_name).stem
    name = re.sub(r"^Arch_", "", name)
    name = _SIZE_SUFFIX_RE.sub("", name)
    name = re.sub(r"[-_]", " ", name)
    name = _AWS_TOKEN_RE.sub("", name)
    return re.sub(r"\s+", " ", name).strip()


def _slugify(text: str) -> str:
    slug = re.sub(r"\s+", "-", text.strip().lower())
    slug = re.sub(r"[^a-z0-9-]", "", slug)
    return re.sub(r"-{2,}", "-", slug).strip("-")


def service_slug(display_name: str) -> str:
    """URL slug with the provider prefix dropped: ``Amazon S3`` -> ``s3``."""
    return _slugify(_PROVIDER_PREFIX_RE.sub("", display_name)) or _slugify(display_name)


def service_description(name: str, category: str) -> str:
    return f"{name} service in the {category} category. Learn more about this service and its capabilities."


def service_markdown(name: str, category: str) -> str:
    return f"""# {name}

Detailed documentation for {name} will be added here. This service is part of the {category} category.

## Key Features

- Feature 1
- Feature 2
- Feature 3

## Use Cases

Common use cases and scenarios for {name}.

## Getting Started

Instructions for getting started with {name}.

## Best Practices

- Best practice 1
- Best practice 2
- Best practice 3
"""


def aws_docs_url(slug: str) -> str:
    return f"https://docs.aws.amazon.com/{slug}/"


def complete_service_record(record: Dict[str, Any], *, now: Optional[str] = None) -> Dict[str, Any]:
    """Fill every derivable field a partial seed record leaves out.

    Only ``name`` and ``category`` are required; fields already present are
    kept as given.
    """
    name = str(record.get("name") or "").strip()
    category = str(record.get("category") or "").strip()
    if not name or not category:
        raise ValueError(f"seed record needs name and category: {record!r}")
    stamp = now or _now_iso()
    slug = record.get("slug") or service_slug(name)
    out = {
        "id": str(uuid.uuid4()),
        "name": name,
        "slug": slug,
        "category": category,
        "summary": f"{name} service",
        "description": service_description(name, category),
        "markdownContent": service_markdown(name, category),
        "iconPath": "",
        "enabled": SEED_DEFAULT_ENABLED,
        "awsDocsUrl": aws_docs_url(slug),
        "diagramUrl": "",
        "createdAt": stamp,
        "updatedAt": stamp,
    }
    out.update({k: v for k, v in record.items() if v is not None})
    return out


# ============================================================================
# Icon pack scan
# ============================================================================


def scan_icon_folders(root: Path) -> List[Dict[str, Any]]:
    """One record per SVG under each mapped ``Arch_*`` folder, in sorted order."""
    services: List[Dict[str, Any]] = []
    folders = sorted(p for p in root.iterdir() if p.is_dir() and p.name.startswith("Arch_"))
    logger.info("Found %d category folders", len(folders))

    for folder in folders:
        category = FOLDER_TO_CATEGORY.get(folder.name)
        if not category:
            logger.warning("No mapping found for category folder %s, skipping", folder.name)
            continue
        svgs = sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() == ".svg")
        logger.info("%s: %d SVG services", category, len(svgs))
        now = _now_iso()
        for svg in svgs:
            name = service_display_name(svg.name)
            if not name:
                logger.warning("Could not derive a name from %s, skipping", svg.name)
                continue
            services.append(complete_service_record(
                {
                    "name": name,
                    "category": category,
                    "iconPath": f"{ICON_URL_PREFIX}/{folder.name}/{svg.name}",
                },
                now=now,
            ))
    return services


def category_summary(services: List[Dict[str, Any]]) -> Dict[str, int]:
    return dict(sorted(Counter(s["category"] for s in services).items()))


# ============================================================================
# CLI
# ============================================================================


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate the services seed file from the icon folders")
    parser.add_argument("--root", default=ROOT_PATH, help=f"Icon pack root (default: {ROOT_PATH})")
    parser.add_argument("--output", default=OUTPUT_PATH, help=f"Seed file to write (default: {OUTPUT_PATH})")
    args = parser.parse_args(argv)

    root = Path(args.root)
    if not root.is_dir():
        logger.error("Root path not found: %s", root)
        return 1

    logger.info("Scanning %s", root)
    services = scan_icon_folders(root)

    output = Path(args.output)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(json.dumps(services, indent=2) + "\n", encoding="utf-8")

    logger.info("Wrote %d services to %s", len(services), output)
    for category, count in category_summary(services).items():
        logger.info("  %s: %d", category, count)
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr, format="%(message)s")
    raise SystemExit(main())
