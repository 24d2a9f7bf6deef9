"""
Run the API with uvicorn: ``python -m atelier``.
"""

import os

import uvicorn

from atelier.app import create_app


def main() -> None:
    uvicorn.run(
        create_app(),
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "3000")),
    )


if __name__ == "__main__":
    main()
