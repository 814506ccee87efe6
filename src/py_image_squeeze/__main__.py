"""Entry point for python -m py_image_squeeze.

与 py-image-squeeze 命令相同。
"""

import sys

from .cli import main


if __name__ == "__main__":
    sys.exit(main())
