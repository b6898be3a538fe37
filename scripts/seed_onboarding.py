"""Load the default onboarding catalog (and optional templates) into the database."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any

from trinity_api.core.database import get_session_factory
from trinity_api.schemas.onboarding import OnboardingStepCreate, OnboardingTemplateCreate
from trinity_api.services.onboarding_catalog import OnboardingCatalogService
from trinity_api.services.onboarding_templates import OnboardingTemplateService


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Seed onboarding steps using OnboardingCatalogService."
    )
    parser.add_argument(
        "--steps",
        type=Path,
        default=None,
        help="JSON array of step definitions; defaults to the packaged catalog.",
    )
    parser.add_argument(
        "--templates",
        type=Path,
        default=None,
        help="Optional JSON array of onboarding templates to create.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate payloads without committing database changes.",
    )
    return parser.parse_args()


def _load_entries(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        raise FileNotFoundError(f"Fixture not found: {path}")
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON array.")
    return data


async def _apply_seed(
    steps: list[OnboardingStepCreate] | None,
    templates: list[OnboardingTemplateCreate],
    *,
    dry_run: bool,
) -> tuple[int, int]:
    session_factory = get_session_factory()

    async with session_factory() as session:
        seeded = await OnboardingCatalogService(session).seed_default_steps(steps)
        template_service = OnboardingTemplateService(session)
        for template in templates:
            await template_service.create_template(template)

        if dry_run:
            await session.rollback()
        else:
            await session.commit()

    return len(seeded), len(templates)


async def _main() -> int:
    args = _parse_args()
    steps = (
        [OnboardingStepCreate.model_validate(entry) for entry in _load_entries(args.steps)]
        if args.steps
        else None
    )
    templates = (
        [OnboardingTemplateCreate.model_validate(entry) for entry in _load_entries(args.templates)]
        if args.templates
        else []
    )
    step_count, template_count = await _apply_seed(steps, templates, dry_run=args.dry_run)
    action = "validated" if args.dry_run else "seeded"
    print(
        f"{action} {step_count} onboarding steps and {template_count} templates"
        f"{' (dry run)' if args.dry_run else ''}."
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(_main()))
