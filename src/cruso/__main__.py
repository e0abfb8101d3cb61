"""Entry point for running Cruso as a module.

Usage:
    python -m cruso validate-config
    python -m cruso --help
"""

from dotenv import load_dotenv

load_dotenv()  # Load .env before any other imports that need env vars

from cruso.cli import main  # noqa: E402

if __name__ == "__main__":
    main()
