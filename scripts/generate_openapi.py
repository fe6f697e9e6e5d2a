"""Write the OpenAPI document of the Whisper Walls app to ``docs/``.

Usage::

    python -m scripts.generate_openapi [--output docs/whisperwalls_openapi.json]
"""

import argparse
import json
import pathlib
import sys

from fastapi import FastAPI

# Import the FastAPI app lazily to avoid side-effects if the import fails
try:
    from whisperwalls.main import app  # pylint: disable=import-error
except Exception as exc:  # pragma: no cover – surface helpful error
    sys.stderr.write(f"Unable to import FastAPI app: {exc}\n")
    sys.exit(1)

DEFAULT_OUTPUT = pathlib.Path("docs/whisperwalls_openapi.json")


def write_spec(output_path: pathlib.Path = DEFAULT_OUTPUT) -> pathlib.Path:
    if not isinstance(app, FastAPI):
        raise TypeError("Imported object `app` is not a FastAPI instance.")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(app.openapi(), indent=2))
    return output_path


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--output", type=pathlib.Path, default=DEFAULT_OUTPUT)
    args = parser.parse_args()

    path = write_spec(args.output)
    print(f"✔ OpenAPI spec written to {path}")


if __name__ == "__main__":
    main()
