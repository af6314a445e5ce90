"""Entry point for the ingestion package.

Usage::

    python -m cardwatch_email run               # monitor configured mailboxes
    python -m cardwatch_email parse <file.eml>  # dry-run one message, print JSON
"""

from __future__ import annotations

import asyncio
import json
import os
import sys
from pathlib import Path

USAGE = "Usage: python -m cardwatch_email <run | parse FILE.eml>"


def parse_message(raw: bytes, *, timezone: str = "Asia/Tokyo") -> dict[str, object]:
    """Decode, detect and extract one RFC 822 message without any IMAP I/O."""
    from .decoder import BodyDecoder
    from .providers import ProviderDetector

    message = BodyDecoder().decode(raw)
    detector = ProviderDetector(timezone=timezone)
    provider = detector.detect(message)

    result: dict[str, object] = {
        "subject": message.subject,
        "sender": message.sender_address,
        "decode_error": message.decode_error,
        "provider": provider.value if provider is not None else None,
        "record": None,
    }
    if provider is not None:
        record = detector.extractor_for(provider).extract(message.plain_text_body)
        result["record"] = record.model_dump(mode="json")
    return result


def main(argv: list[str] | None = None) -> int:
    args = sys.argv[1:] if argv is None else argv
    if not args or args[0] not in ("run", "parse"):
        print(USAGE, file=sys.stderr)
        return 1

    mode = args[0]

    if mode == "run":
        from .config import IngestConfig
        from .runner import run

        asyncio.run(run(IngestConfig()))
        return 0

    if len(args) != 2:
        print(USAGE, file=sys.stderr)
        return 1
    path = Path(args[1])
    if not path.is_file():
        print(f"No such file: {path}", file=sys.stderr)
        return 1

    result = parse_message(
        path.read_bytes(),
        timezone=os.environ.get("INGEST_TIMEZONE", "Asia/Tokyo"),
    )
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0 if result["provider"] is not None else 2


if __name__ == "__main__":
    sys.exit(main())
