"""Allow ``python -m n8nstack``."""

from .cli import main

raise SystemExit(main())
