"""shell-watcher 入口点。

支持: python -m shell_watcher
"""

import sys

from .app import main

if __name__ == "__main__":
    sys.exit(main())
