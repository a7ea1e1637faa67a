"""CLI entry point for img2img.cli module.

Enables execution via: python -m img2img.cli
"""

from img2img.cli.recover_tasks import main

if __name__ == "__main__":
    main()
