from __future__ import annotations
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any, List, Optional

try:
    from .chain import AllProvidersFailed
    from .errors import ConfigError
    from .providers.registry import ProviderRegistry
    from .providers.types import Capability
    from .settings import configure_logging, load_chain_overrides, load_settings
except ImportError:
    from genrelay.chain import AllProvidersFailed
    from genrelay.errors import ConfigError
    from genrelay.providers.registry import ProviderRegistry
    from genrelay.providers.types import Capability
    from genrelay.settings import configure_logging, load_chain_overrides, load_settings

# generic input key per capability, matching the /ai media modes
INPUT_KEYS = {
    Capability.IMAGE_TO_VIDEO: "image_url",
    Capability.IMAGE_RESTORE: "image_url",
    Capability.VIDEO_TO_VIDEO: "video_url",
    Capability.VIDEO_UPSCALE: "video_url",
    Capability.CHARACTER_PERFORMANCE: "video_url",
    Capability.VIDEO_CAPTION: "video_url",
    Capability.VIDEO_BURN_CAPTION: "video_url",
    Capability.RECONSTRUCT_3D: "video_url",
    Capability.TEXT_TO_SPEECH: "text",
}


class ConsoleSink:
    """Progress sink that prints updates; edits are printed as new lines."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout
        self._seq = 0

    async def send_message(self, text: str) -> int:
        self._seq += 1
        print(text, file=self.stream)
        return self._seq

    async def edit_message(self, handle: int, text: str) -> bool:
        print(text, file=self.stream)
        return True


def cmd_run(capability: str, text: str, model: Optional[str] = None, output: Optional[Path] = None) -> int:
    try:
        cap = Capability(capability)
    except ValueError:
        print(f"Unknown capability: {capability}", file=sys.stderr)
        return 2
    settings = load_settings()
    try:
        executor = ProviderRegistry(settings).build_executor()
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        for err in e.errors:
            print(" -", err, file=sys.stderr)
        return 2
    data: dict[str, Any] = {INPUT_KEYS.get(cap, "prompt"): text}
    if cap is Capability.CHAT_COMPLETION:
        data["context"] = f"user: {text}"
    if model:
        data["model"] = model
    outcome = asyncio.run(executor.execute(cap, data, ConsoleSink()))
    if isinstance(outcome, AllProvidersFailed):
        print(str(outcome), file=sys.stderr)
        for a in outcome.attempts:
            print(f" - {a.provider}: {a.error_type}: {a.error}", file=sys.stderr)
        return 1
    result = outcome.output
    if isinstance(result, (bytes, bytearray)):
        if output is None:
            print(f"{outcome.provider} returned {len(result)} bytes; pass --output to save them", file=sys.stderr)
            return 1
        Path(output).write_bytes(bytes(result))
        print(f"Saved: {output}")
    else:
        print(result if isinstance(result, str) else json.dumps(result, indent=2))
    print(f"provider={outcome.provider} attempts={len(outcome.attempts)}", file=sys.stderr)
    return 0


def cmd_providers() -> int:
    settings = load_settings()
    try:
        registry = ProviderRegistry(settings)
    except ConfigError as e:
        print(f"Config error: {e}", file=sys.stderr)
        return 2
    for cap, cands in registry.chains().items():
        names = [f"{c.name}{'' if c.configured else ' (off)'}" for c in cands]
        print(f"{cap.value.ljust(22)}  {', '.join(names) or '-'}")
    return 0


def cmd_check_config(path: Path) -> int:
    try:
        overrides = load_chain_overrides(str(path))
    except ConfigError as e:
        print(f"{e}", file=sys.stderr)
        for err in e.errors:
            print(" -", err, file=sys.stderr)
        return 1
    print(f"OK: {len(overrides)} capability chain(s) in {path}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="genrelay", description="Run generation jobs through provider fallback chains")
    parser.add_argument("--log-level", default=None, help="logging level (defaults to LOG_LEVEL or INFO)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Run one capability through its fallback chain")
    p_run.add_argument("capability", help="e.g. chat-completion, text-to-image")
    p_run.add_argument("text", nargs="+", help="prompt, text or input URL")
    p_run.add_argument("--model", default=None, help="model key for chat or REPLICATE_* variable for custom")
    p_run.add_argument("--output", type=Path, default=None, help="file for binary results (images, audio)")

    sub.add_parser("providers", help="List the fallback chain of every capability")

    p_check = sub.add_parser("check-config", help="Validate a chain config file")
    p_check.add_argument("file", type=Path)

    args = parser.parse_args(argv)
    configure_logging(args.log_level or load_settings().log_level)

    if args.cmd == "run":
        return cmd_run(args.capability, " ".join(args.text), model=args.model, output=args.output)
    if args.cmd == "providers":
        return cmd_providers()
    if args.cmd == "check-config":
        return cmd_check_config(args.file)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
