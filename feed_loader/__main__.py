import sys

from feed_loader.main import main

sys.exit(main())
