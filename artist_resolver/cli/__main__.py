"""Allow ``python -m artist_resolver.cli`` execution."""

from artist_resolver.cli.resolve import main

main()
