"""Local demo agent for CLI backend integration tests.

Prints one JSON result document. Markers in the prompt steer the outcome:
``[[fail]]`` reports an error and ``[[ask]]`` asks questions back.
"""

from __future__ import annotations

import argparse
import hashlib
import json
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> int:
    """Run local deterministic echo generation."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--session-id", default=None)
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8")
    session_id = args.session_id or "echo-" + hashlib.sha256(prompt.encode()).hexdigest()[:12]

    if "[[fail]]" in prompt:
        payload = {"is_error": True, "result": "Agent crashed.", "session_id": session_id}
    elif "[[ask]]" in prompt:
        payload = {
            "is_error": False,
            "result": "Which day? Which time? Which room?",
            "session_id": session_id,
        }
    else:
        last_line = prompt.strip().splitlines()[-1] if prompt.strip() else ""
        payload = {
            "is_error": False,
            "result": f"echo: {last_line}",
            "session_id": session_id,
            "total_cost_usd": 0.001,
        }
    sys.stdout.write(json.dumps(payload, ensure_ascii=False))
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
