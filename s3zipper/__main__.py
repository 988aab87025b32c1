"""Run the S3 Zipper with uvicorn: ``python -m s3zipper``."""

from __future__ import annotations

import uvicorn

from s3zipper.config import load_settings


def main() -> None:
    settings = load_settings()
    uvicorn.run("s3zipper.main:app", host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
