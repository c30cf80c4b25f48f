"""Allow running Feed Tagger with ``python -m feed_tagger``."""

from .app import main

main()
