"""
CLI example to run the complete storybook creation pipeline end-to-end.

Usage:
    python scripts/run_full_pipeline.py \
        --request storybook_request.yaml \
        --user-id 7f3c9a2e-0000-4000-8000-000000000001 \
        --drawing example_images/fox.png \
        --output storybook_response.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import mimetypes
import sys
from base64 import b64encode
from pathlib import Path
from typing import Any, Dict

import httpx
import yaml

from tqdm.auto import tqdm

# Ensure project root is on the Python path when running as a script.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from doodlebook.common.errors import StorybookError  # noqa: E402
from doodlebook.pipeline import load_request_file  # noqa: E402
from doodlebook.services import build_services  # noqa: E402


class ProgressTracker:
    """
    Provides user-friendly command-line progress updates for the storybook pipeline.
    """

    def __init__(self) -> None:
        self._asset_bar: tqdm | None = None

    def __call__(self, stage: str, payload: Dict[str, Any]) -> None:
        match stage:
            case "quota:checking":
                self._write("[1/6] Checking storybook quota...")
            case "quota:ready":
                plan = payload.get("plan", "free")
                self._write(f"[1/6] Quota available on the {plan} plan.")
            case "story:generating":
                language = payload.get("language", "ko")
                self._write(f"[2/6] Generating the story text ({language})...")
            case "story:generated":
                response_id = payload.get("response_id")
                suffix = f" (response {response_id})." if response_id else "."
                self._write(f"[2/6] Story text received{suffix}")
            case "story:parsed":
                total = payload.get("total_pages", 0)
                schema = payload.get("schema", "structured")
                highlight = payload.get("highlight_page")
                self._write(
                    f"[3/6] Parsed {total} pages with the {schema} schema (highlight page {highlight})."
                )
            case "assets:generating":
                total = int(payload.get("images", 0)) + int(payload.get("narrations", 0))
                self._write("[4/6] Generating illustrations and narration...")
                self._asset_bar = tqdm(total=total, desc="Generated assets", unit="asset")
            case "assets:ready":
                if self._asset_bar is not None:
                    done = int(payload.get("images", 0)) + int(payload.get("narrations", 0))
                    self._asset_bar.update(done - self._asset_bar.n)
                    self._asset_bar.close()
                    self._asset_bar = None
            case "persistence:saving":
                self._write("[5/6] Saving storybook and uploading assets...")
            case "quota:debited":
                used = payload.get("free_used")
                total = payload.get("free_total")
                self._write(f"[5/6] Storybook saved. Free quota used: {used}/{total}.")
            case "pipeline:complete":
                self._write("[6/6] Pipeline complete.")
                self.close()

    def close(self) -> None:
        if self._asset_bar is not None:
            self._asset_bar.close()
            self._asset_bar = None

    @staticmethod
    def _write(message: str) -> None:
        tqdm.write(message)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the full doodle storybook creation pipeline.")
    parser.add_argument(
        "--request",
        required=True,
        help="Path to the storybook request YAML/JSON file (title, description, language).",
    )
    parser.add_argument(
        "--user-id",
        required=True,
        help="User id the storybook is created for and whose quota is debited.",
    )
    parser.add_argument(
        "--drawing",
        default=None,
        help="Optional path to the child's drawing; overrides imageDataUrl in the request file.",
    )
    parser.add_argument(
        "--output",
        default="storybook_response.yaml",
        help="Output YAML file to store the creation response.",
    )
    parser.add_argument(
        "--include-media",
        action="store_true",
        help="Keep inline data URLs in the output instead of replacing them with a size summary.",
    )
    return parser.parse_args()


def encode_drawing(path: Path) -> str:
    content_type = mimetypes.guess_type(path.name)[0] or "image/png"
    if not content_type.startswith("image/"):
        raise ValueError(f"Drawing '{path}' is not an image file.")
    encoded = b64encode(path.read_bytes()).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def summarize_media(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: summarize_media(item) for key, item in value.items()}
    if isinstance(value, list):
        return [summarize_media(item) for item in value]
    if isinstance(value, str) and value.startswith("data:"):
        header = value.split(",", 1)[0]
        return f"<{header}, {len(value)} chars>"
    return value


async def run(args: argparse.Namespace) -> Dict[str, Any]:
    payload = dict(load_request_file(Path(args.request)))
    if args.drawing:
        payload["imageDataUrl"] = encode_drawing(Path(args.drawing))

    tracker = ProgressTracker()
    async with httpx.AsyncClient(timeout=httpx.Timeout(120.0)) as http_client:
        services = build_services(http_client)
        try:
            return await services.pipeline.create_from_mapping(
                args.user_id,
                payload,
                progress_callback=tracker,
            )
        finally:
            tracker.close()


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    args = parse_args()

    try:
        response = asyncio.run(run(args))
    except (StorybookError, ValueError) as exc:
        message = exc.message if isinstance(exc, StorybookError) else str(exc)
        tqdm.write(f"Storybook creation failed: {message}")
        return 1

    if not args.include_media:
        response = summarize_media(response)

    output_path = Path(args.output)
    output_path.write_text(
        yaml.safe_dump(response, allow_unicode=True, sort_keys=False),
        encoding="utf-8",
    )
    tqdm.write(f"Storybook {response['storybookId']} written to {output_path}.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
