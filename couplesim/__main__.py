import sys

from couplesim.main import main

sys.exit(main())
