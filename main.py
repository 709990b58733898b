import sys

from motion_blobs.runner import main


if __name__ == "__main__":
    sys.exit(main())
