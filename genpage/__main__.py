import sys

from genpage.build import main

sys.exit(main())
