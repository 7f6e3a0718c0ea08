import sys

from eth_ico_admin.cli import main

if __name__ == "__main__":
    sys.exit(main())
