"""Generate and write an augmented OpenAPI spec into docs/openapi.json."""
from __future__ import annotations

import json
import os

from helpdesk.helpers.openapi import augment_openapi
from helpdesk.main import app


def main():
    spec = augment_openapi(app.openapi())
    docs_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "docs")
    os.makedirs(docs_dir, exist_ok=True)
    out = os.path.join(docs_dir, "openapi.json")
    with open(out, "w", encoding="utf-8") as f:
        json.dump(spec, f, indent=2, ensure_ascii=False, sort_keys=True)
    print(f"Wrote OpenAPI to {out}")


if __name__ == "__main__":
    main()
