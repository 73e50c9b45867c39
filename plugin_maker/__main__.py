import sys

from plugin_maker import main


if __name__ == "__main__":
    sys.exit(main())
