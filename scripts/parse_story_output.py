"""
Parse a saved raw LLM story response and print the normalized story as YAML.

Usage:
    python scripts/parse_story_output.py raw_story.txt --title "A Fox's Journey"
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import asdict
from pathlib import Path

import yaml

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from doodlebook.story_generation import parse_story_outcome  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Normalize a raw LLM story response.")
    parser.add_argument("path", help="File containing the raw model output.")
    parser.add_argument("--title", default="", help="Storybook title, used for legacy output.")
    parser.add_argument(
        "--description", default="", help="Storybook description, used for legacy output."
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    raw_text = Path(args.path).read_text(encoding="utf-8")
    outcome = parse_story_outcome(raw_text, title=args.title, description=args.description)

    if outcome.story is None:
        print("Output matched neither the structured nor the legacy story schema.", file=sys.stderr)
        return 1

    story = outcome.story
    document = {
        "schema": outcome.kind,
        "highlight_page": story.highlight_page,
        "image_prompts": asdict(story.image_prompts),
        "characters": [asdict(character) for character in story.characters],
        "pages": [asdict(page) for page in story.pages],
    }
    print(yaml.safe_dump(document, allow_unicode=True, sort_keys=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
