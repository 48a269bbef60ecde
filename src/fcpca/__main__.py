import sys

from fcpca.cli import main

sys.exit(main())
