import sys

from livetables.cli.pipeline_cli import main

sys.exit(main())
